"""Module entrypoint for running bedrock-burner as ``python -m bedrock_burner``."""

from __future__ import annotations

from bedrock_burner.cli import main


if __name__ == "__main__":
    main()
