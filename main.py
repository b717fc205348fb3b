#!/usr/bin/env python

from dmv_release.cli import main


if __name__ == "__main__":
    main()
