"""
CLI entry point, when used as a module: `python -m konverge`.

Useful for debugging in the IDEs (use the start-mode "Module", module "konverge").
"""
from konverge import cli

if __name__ == '__main__':
    cli.main()
