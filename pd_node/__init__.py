"""pd-node - JavaScript & TypeScript scripting for Pure Data style hosts."""

__app_name__ = "pd-node"
__version__ = "0.1.0"
