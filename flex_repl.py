import logging
import os
import sys
from pathlib import Path

from flex.flex_io import ConsoleSink
from flex.flex_runtime import Session, VERSION
from flex.flex_serialize import detect_format


def read_line(prompt: str) -> str:
    return input(prompt)


def configure_logging():
    level = logging.DEBUG if os.environ.get("FLEX_DEBUG") else logging.WARNING
    logging.basicConfig(level=level, stream=sys.stderr, format="[%(levelname)s] %(name)s: %(message)s")


def run_script_file(file_path: str):
    """Run a FLEX program file non-interactively and exit with appropriate status."""
    p = Path(file_path)
    try:
        source = p.read_text(encoding="utf-8")
    except FileNotFoundError:
        print(f"Error: file not found: {file_path}", file=sys.stderr)
        raise SystemExit(1)
    session = Session(sink=ConsoleSink(), fmt=detect_format(file_path, source) or 'yaml')
    result = session.handle_script(source)
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)
        raise SystemExit(1)


def main():
    """Run a program file when provided, otherwise start the interactive REPL."""
    configure_logging()
    if len(sys.argv) > 1:
        arg = sys.argv[1]
        if not arg.startswith("-"):
            run_script_file(arg)
            return

    print(f"FLEX REPL v{VERSION}")
    print("Type 'exit' or press Ctrl+D to quit.")

    session = Session(sink=ConsoleSink())

    while True:
        try:
            line = read_line(">> ").strip()
        except EOFError:
            print("\nExiting.")
            break

        if not line:
            continue
        if line == "exit":
            break

        result = session.handle_script(line)
        if result.status == 'success':
            print("< OK!")
        elif result.status == 'terminated':
            print("< dead")
        else:
            print(f"< {result.format_error()}", file=sys.stderr)


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\nExiting.")
