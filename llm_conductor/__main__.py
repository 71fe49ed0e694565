import sys

from llm_conductor.cli import main

sys.exit(main())
