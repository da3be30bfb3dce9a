"""Terminal simulation of a phone call with a voice agent.

Demonstrates:
- Defining tools with @tool
- Creating a Conversation with a greeting
- Streaming speech events as they are generated
- Barge-in: a line starting with ``!`` interrupts the bot at the given text

Usage:
    uv run --env-file=.env examples/phone_agent_example.py --provider openai --model gpt-4o-mini
    uv run examples/phone_agent_example.py --provider compatible --url localhost:8000 --model Qwen/Qwen3-8B --trace
"""

import argparse
import asyncio
import logging

from voicerelay import (
    Conversation,
    ConversationConfig,
    InterruptEvent,
    ModelProvider,
    OpenAICompatibleProvider,
    OpenAIProvider,
    SpeechEvent,
    TranscriptEvent,
    configure_logging,
    tool,
)

PROVIDERS = {
    "openai": lambda url: OpenAIProvider(),
    "compatible": lambda url: OpenAICompatibleProvider(base_url=f"http://{url}"),
}

ORDERS = {
    "1001": "shipped, arriving Thursday",
    "1002": "processing",
}


def make_provider(provider: str, url: str | None) -> ModelProvider:
    if provider == "compatible" and not url:
        raise SystemExit("--url is required for compatible provider")
    return PROVIDERS[provider](url)


def setup_tracing(service_name: str):
    from opentelemetry import trace
    from opentelemetry.sdk.resources import SERVICE_NAME, Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import (
        SimpleSpanProcessor, ConsoleSpanExporter,
    )
    from voicerelay.instrumentation import instrument

    provider = TracerProvider(
        resource=Resource({SERVICE_NAME: service_name})
    )
    provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    instrument()


@tool
async def get_customer_profile():
    """Fetches the caller's profile."""
    return {"name": "Roger", "tier": "gold"}


@tool
def lookup_order(order_id: str):
    """Look up the status of an order.

    Args:
        order_id: The order number the caller read out.
    """
    return ORDERS.get(order_id, f"No order {order_id} on file.")


def print_speech(event: SpeechEvent):
    print(event.text, end="\n" if event.is_last else "", flush=True)


async def main():
    parser = argparse.ArgumentParser(description="Phone agent")
    parser.add_argument("--provider", choices=PROVIDERS, default="openai")
    parser.add_argument("--model", default="gpt-4o-mini")
    parser.add_argument("--url", default=None)
    parser.add_argument("--trace", action="store_true")
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args()

    configure_logging(logging.DEBUG if args.debug else logging.WARNING)
    if args.trace:
        setup_tracing("phone-agent")

    config = ConversationConfig.from_env(
        model=args.model,
        greeting="Thanks for calling. How can I help?",
    )
    conversation = Conversation.create(
        make_provider(args.provider, args.url),
        tools=[get_customer_profile, lookup_order],
        config=config,
    )
    conversation.on_speech(print_speech)

    print(f"Bot: {config.greeting}")
    loop = asyncio.get_running_loop()
    while True:
        try:
            line = await loop.run_in_executor(None, input, "You: ")
        except (KeyboardInterrupt, EOFError):
            print("\nGoodbye!")
            break

        if line.startswith("!"):
            conversation.handle_interrupt(InterruptEvent(utterance_until_interrupt=line[1:]))
        else:
            print("Bot: ", end="", flush=True)
            conversation.handle_transcript(TranscriptEvent(text=line, is_final=True))
        await conversation.wait_idle()

    await conversation.dispose()


if __name__ == "__main__":
    asyncio.run(main())
