"""
Module entry point for: python -m question_parser

Allows running the parser directly as a module:
    python -m question_parser parse <file> [options]
    python -m question_parser areas <file> --areas <areas.json>
    python -m question_parser ocr <image> [<image> ...]
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
