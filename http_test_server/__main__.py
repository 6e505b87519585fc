import sys

from http_test_server.app.cli import main

if __name__ == "__main__":
    sys.exit(main())
