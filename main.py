"""
Crypto Portfolio Tracker - Main Entry Point
===========================================
Run this file to start the portfolio tracker CLI.
Usage: python main.py
"""

from cryptofolio.cli import CLI
from cryptofolio.log import setup_logging


def main():
    setup_logging()
    cli = CLI()
    cli.run()


if __name__ == "__main__":
    main()
