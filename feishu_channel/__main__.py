import os

from dotenv import load_dotenv

from feishu_channel.cli.commands import app

# Precedence: existing env vars > .env file (override=False)
load_dotenv(os.path.expanduser("~/.feishu-channel/.env"), override=False)

if __name__ == "__main__":
    app()
