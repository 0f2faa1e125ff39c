from typing import Protocol


class FunctionInvokerPort(Protocol):
    def invoke(self, function_name: str, body: dict): ...
