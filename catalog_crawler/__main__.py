import sys

from catalog_crawler.cli import main

sys.exit(main())
