from quote_pipeline.ingestion.connectors.aiohttp_client import AiohttpClient

__all__ = ["AiohttpClient"]
