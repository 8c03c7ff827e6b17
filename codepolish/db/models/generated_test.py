"""GeneratedTest model: test files produced for a polish."""

from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text

from codepolish.db.base import Base


class GeneratedTest(Base):
    __tablename__ = "generated_tests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    polish_id = Column(Integer, ForeignKey("polishes.id", ondelete="CASCADE"), nullable=False, index=True)
    filename = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    framework = Column(String(32), nullable=False, default="vitest")  # jest, vitest, mocha

    # Coverage percentages
    coverage_statements = Column(Integer, nullable=True)
    coverage_branches = Column(Integer, nullable=True)
    coverage_functions = Column(Integer, nullable=True)
    coverage_lines = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
