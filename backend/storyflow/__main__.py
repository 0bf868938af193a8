"""Entry point for python -m storyflow"""
from storyflow.cli.commands import app

if __name__ == "__main__":
    app()
