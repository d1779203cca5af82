"""Module entry point: `python -m quest_archiver`."""

from quest_archiver.cli.archiver import main

if __name__ == "__main__":
    raise SystemExit(main())
