from typing import List, Optional, Tuple

from interpreter import Interpreter, RuntimeContext
from objects import Value, inspect


def make_interpreter(source: str, filename: str = "<string>", context: Optional[RuntimeContext] = None) -> Tuple[Interpreter, List[str]]:
    output: List[str] = []
    interpreter = Interpreter(source=source, filename=filename, output_sink=output.append, context=context)
    return interpreter, output


def run(source: str, filename: str = "<string>") -> Value:
    interpreter, _ = make_interpreter(source, filename)
    return interpreter.run()


def run_output(source: str, filename: str = "<string>") -> Tuple[Value, str]:
    interpreter, output = make_interpreter(source, filename)
    result = interpreter.run()
    return result, "".join(output)


def show(source: str) -> str:
    """Display form of the program's result, with strings quoted as inside a list."""
    return inspect(run(source), True)
