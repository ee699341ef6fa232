from abc import ABC, abstractmethod

from vault_assistant.models import CategorizationResult, Category, Transaction


class Classifier(ABC):
    @abstractmethod
    def classify(
        self, transaction: Transaction, valid_categories: list[str] | None = None
    ) -> CategorizationResult | None:
        """Suggest a category for the transaction, or None when unsure."""
        pass

    @abstractmethod
    def learn(self, transaction: Transaction, category: Category) -> None:
        """Learn from a confirmed transaction-category pair."""
        pass
