import sys

from vmlauncher import cli

if __name__ == "__main__":
    sys.exit(cli.main())
