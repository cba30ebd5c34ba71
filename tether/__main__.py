"""Allow ``python -m tether``."""
from tether.engine.cli import main

main()
