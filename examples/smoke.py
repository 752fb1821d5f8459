import asyncio
import json

from llm_bridge.client import LLMClient
from llm_bridge.errors import CompletionError
from llm_bridge.providers.anthropic import AnthropicModel, AnthropicModelMode, AnthropicProvider
from llm_bridge.providers.openai import OpenAIModel, OpenAIProvider
from llm_bridge.types import CompletionRequest, RequestMessage, Role, TextContent, ToolDefinition


async def main() -> None:
    client = LLMClient(
        anthropic=AnthropicProvider(
            api_key=None,
            model=AnthropicModel(id="claude-sonnet-4-0", mode=AnthropicModelMode(type="thinking")),
        ),
        openai=OpenAIProvider(api_key="DUMMY", model=OpenAIModel(id="gpt-4o")),
    )

    req = CompletionRequest(
        messages=[
            RequestMessage(role=Role.SYSTEM, content=[TextContent(text="Answer briefly.")]),
            RequestMessage(role=Role.USER, content=[TextContent(text="What's the weather in Paris?  ")], cache=True),
        ],
        tools=[ToolDefinition(name="get_weather", description="Current weather for a city")],
        thinking_allowed=True,
    )

    # Payloads are built locally; nothing is sent.
    for provider in ("anthropic", "openai"):
        print(f"--- {provider}")
        print(json.dumps(client.build_request(provider, req), indent=2))

    # No key configured for Anthropic, so streaming fails before any request.
    try:
        async for event in client.stream("anthropic", req):
            print(event)
    except CompletionError as e:
        print("Expected error:", type(e).__name__, e)
    finally:
        await client.aclose()


if __name__ == "__main__":
    asyncio.run(main())
