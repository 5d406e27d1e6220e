"""Run the model-operator command line tool with `python -m model_operator`."""

from .tool.model_operator import main

if __name__ == "__main__":
    main()
