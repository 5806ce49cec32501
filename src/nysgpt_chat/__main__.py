import asyncio
import sys

from dotenv import load_dotenv
from loguru import logger

from nysgpt_chat.app_config import load_json_config, parse_app_config, resolve_runtime_env
from nysgpt_chat.bootstrap import bootstrap_runtime
from nysgpt_chat.console import ChatConsole


async def main() -> None:
    load_dotenv()

    app = parse_app_config(load_json_config())
    env = resolve_runtime_env()

    try:
        runtime = await bootstrap_runtime(app, env)
    except ValueError as ex:
        logger.error(str(ex))
        sys.exit(1)

    console = ChatConsole(runtime.conversation)

    print("nysgpt-chat (type 'exit' to quit, '/help' for commands)")
    print(f"Model: {app.model}")
    if runtime.persistence.enabled:
        print(f"Sessions: saved ({app.session_store})")
    else:
        print("Sessions: not saved (set NYSGPT_USER_ID to enable)")
    limit = runtime.usage.daily_limit
    if limit != float("inf"):
        print(f"Daily words: {runtime.usage.words_used:,} of {limit:,.0f} used")
    if runtime.log_descriptions:
        print(f"Logging: {', '.join(runtime.log_descriptions)}")
    print()

    try:
        while True:
            try:
                user_input = await asyncio.to_thread(input, "you> ")
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()

            if trimmed in ("exit", "quit"):
                break

            if not trimmed:
                continue

            try:
                await console.run(trimmed)
                print()
            except Exception as ex:
                logger.error(f"Unhandled error: {ex}")
    finally:
        console.close()
        await runtime.aclose()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
