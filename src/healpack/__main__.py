"""Main entry point for Healpack.

Usage:
    python -m healpack prophet-scan <project-root>
    python -m healpack surgeon-analyze <project-root> <build-output-file>
    python -m healpack run <project-root> --build-command "npm run build"
    python -m healpack --help
"""

from healpack.cli import main

if __name__ == "__main__":
    main()
