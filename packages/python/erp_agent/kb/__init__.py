# Semantic file search over the user's indexed file chunks
from .search import *
from .errors import (
    is_retryable_embedding_error,
    is_permanent_embedding_error,
    is_retryable_vector_index_error,
)
