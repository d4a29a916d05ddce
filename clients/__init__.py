# Infrastructure clients
from clients.settings import DatabaseSettings, get_database_url, get_settings
from clients.postgres_client import PostgresClient, TransactionContext
