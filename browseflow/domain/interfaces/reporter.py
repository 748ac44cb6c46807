"""
AgentReporter contract - the sink for all orchestration narration.
"""

from abc import ABC, abstractmethod


class IAgentReporter(ABC):

    @abstractmethod
    def success(self, message: str) -> None:
        pass

    @abstractmethod
    def failure(self, message: str) -> None:
        pass

    @abstractmethod
    def loading(self, message: str) -> None:
        pass

    @abstractmethod
    def info(self, message: str) -> None:
        pass

    @abstractmethod
    def log(self, message: str) -> None:
        pass
