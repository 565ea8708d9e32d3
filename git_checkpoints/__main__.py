"""Allow ``python -m git_checkpoints``, which is what scheduled jobs run."""

from git_checkpoints.cli import main

if __name__ == "__main__":
    main()
