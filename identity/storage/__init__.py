"""Storage interface and adapters."""

from identity.storage.base import IdentityStorage
from identity.storage.memory import MemoryIdentityStorage
from identity.storage.postgres import PostgresIdentityStorage
