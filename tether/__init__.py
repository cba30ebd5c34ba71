"""tether: keep a CLI tool alive across request/response turns."""

__version__ = "0.1.0"
