"""Entry point for ``python -m spigot_builder``."""

from spigot_builder.main import run

if __name__ == "__main__":
    run()
