"""
Family Week Planner — Entry Point.

`python main.py` starts the Telegram bot; `python main.py api` serves the
HTTP API with uvicorn.
"""

import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "api":
        from src.api.app import run
        run()
    else:
        from src.bot.telegram_bot import main
        main()
