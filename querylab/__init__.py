"""QueryLab: natural-language analytics over BigQuery.

This package turns business questions into BigQuery SQL and runs it with:
- Knowledge-base context (concepts, tables, patterns, rules, examples)
- Cheap refinement of follow-up questions, full generation for new topics
- Column validation and learned corrections
- Self-healing execution with retry and AI-assisted repair
- A feedback loop that turns repeated errors into correction rules
"""

# Load environment variables at package import
from pathlib import Path
from dotenv import load_dotenv

# Find and load .env file from project root
project_root = Path(__file__).parent.parent
env_file = project_root / ".env"
if env_file.exists():
    load_dotenv(env_file)

__version__ = "1.0.0"

from .config import settings
from .knowledge import MetadataStore, ContextBuilder
from .memory import ConversationStore, QuestionClassifier, SqlRefiner
from .learning import LearningStore
from .llm import CompletionClient
from .database import BigQueryClient
from .generation import SqlGenerator, ColumnValidator
from .execution import ExecutionRetryEngine, SqlFixer, classify_error
from .agent import QueryLabAgent

__all__ = [
    # Version
    "__version__",
    # Config
    "settings",
    # Knowledge
    "MetadataStore",
    "ContextBuilder",
    # Memory
    "ConversationStore",
    "QuestionClassifier",
    "SqlRefiner",
    # Learning
    "LearningStore",
    # Clients
    "CompletionClient",
    "BigQueryClient",
    # Generation
    "SqlGenerator",
    "ColumnValidator",
    # Execution
    "ExecutionRetryEngine",
    "SqlFixer",
    "classify_error",
    # Agent
    "QueryLabAgent",
]
