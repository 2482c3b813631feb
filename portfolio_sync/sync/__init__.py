from .repository import InMemoryInvestmentRepository, InvestmentRepository

__all__ = ["InMemoryInvestmentRepository", "InvestmentRepository"]
