from hymem.embeddings.openai_embedder import OpenAIEmbedder

__all__ = ["OpenAIEmbedder"]
