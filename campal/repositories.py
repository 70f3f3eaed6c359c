"""
Data Repository Classes for the CAMPAL Registration Application

This module implements the Repository pattern for data access operations.
Each repository wraps one table of the hosted database, so the services
never talk to the Supabase client directly and tests can swap in the
in-memory implementation.
"""

import copy
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional

from supabase import Client, create_client

from .exceptions import DataAccessException

logger = logging.getLogger(__name__)


class TableRepository(ABC):
    """
    Abstract base class for table repositories

    This class defines the interface that all data repositories
    must implement, following the Repository pattern.
    """

    def __init__(self, table: str):
        self.table = table

    @abstractmethod
    def select(self, filters: Optional[Dict] = None, order_by: Optional[str] = None,
               descending: bool = False) -> List[Dict]:
        """
        Load rows matching every equality filter

        Args:
            filters: Mapping of column name to required value
            order_by: Optional column to sort by
            descending: Sort direction

        Returns:
            List of row dictionaries

        Raises:
            DataAccessException: If the query fails
        """
        pass

    @abstractmethod
    def insert(self, rows: List[Dict]) -> List[Dict]:
        """
        Insert rows and return them as stored (with generated columns)

        Raises:
            DataAccessException: If the insert fails
        """
        pass

    @abstractmethod
    def update(self, match_field: str, match_value, values: Dict) -> List[Dict]:
        """
        Update the rows where match_field equals match_value

        Returns:
            The updated rows

        Raises:
            DataAccessException: If the update fails
        """
        pass

    def find_one(self, field: str, value) -> Optional[Dict]:
        """
        Get the first row where field equals value

        Returns:
            Row dictionary or None if nothing matches
        """
        rows = self.select({field: value})
        return rows[0] if rows else None


class SupabaseRepository(TableRepository):
    """
    Supabase table repository

    Every call goes through the PostgREST query builder of the
    supabase client; SDK errors are wrapped in DataAccessException.
    """

    def __init__(self, client: Client, table: str):
        """
        Initialize Supabase repository

        Args:
            client: Configured supabase client
            table: Name of the table to query
        """
        super().__init__(table)
        self.client = client

    def select(self, filters: Optional[Dict] = None, order_by: Optional[str] = None,
               descending: bool = False) -> List[Dict]:
        try:
            query = self.client.table(self.table).select("*")
            for column, value in (filters or {}).items():
                query = query.eq(column, value)
            if order_by:
                query = query.order(order_by, desc=descending)
            response = query.execute()
            return response.data or []
        except Exception as e:
            logger.error("Select on %s failed: %s", self.table, e)
            raise DataAccessException("select", f"{self.table}: {str(e)}")

    def insert(self, rows: List[Dict]) -> List[Dict]:
        try:
            response = self.client.table(self.table).insert(rows).execute()
            return response.data or []
        except Exception as e:
            logger.error("Insert into %s failed: %s", self.table, e)
            raise DataAccessException("insert", f"{self.table}: {str(e)}")

    def update(self, match_field: str, match_value, values: Dict) -> List[Dict]:
        try:
            response = (
                self.client.table(self.table)
                .update(values)
                .eq(match_field, match_value)
                .execute()
            )
            return response.data or []
        except Exception as e:
            logger.error("Update on %s failed: %s", self.table, e)
            raise DataAccessException("update", f"{self.table}: {str(e)}")


class InMemoryRepository(TableRepository):
    """
    In-memory repository implementation for testing

    This class keeps rows in a list and mimics the columns the
    hosted database generates on insert (id, created_at, updated_at).
    """

    def __init__(self, table: str, initial_rows: Optional[List[Dict]] = None):
        """
        Initialize in-memory repository

        Args:
            table: Table name, kept for log and error messages
            initial_rows: Optional initial rows to store
        """
        super().__init__(table)
        self._rows: List[Dict] = [copy.deepcopy(row) for row in (initial_rows or [])]

    @staticmethod
    def _matches(row: Dict, filters: Dict) -> bool:
        for column, value in filters.items():
            current = row.get(column)
            if current is None or value is None:
                if current is not value:
                    return False
            elif str(current) != str(value):
                return False
        return True

    def select(self, filters: Optional[Dict] = None, order_by: Optional[str] = None,
               descending: bool = False) -> List[Dict]:
        rows = [copy.deepcopy(row) for row in self._rows if self._matches(row, filters or {})]
        if order_by:
            # None sorts last, as in PostgreSQL ascending order
            rows.sort(
                key=lambda row: (row.get(order_by) is None, row.get(order_by) or ""),
                reverse=descending
            )
        return rows

    def insert(self, rows: List[Dict]) -> List[Dict]:
        now = datetime.now(timezone.utc).isoformat()
        stored = []
        for row in rows:
            new_row = copy.deepcopy(row)
            new_row.setdefault('id', str(uuid.uuid4()))
            if new_row['id'] is None:
                new_row['id'] = str(uuid.uuid4())
            new_row.setdefault('created_at', now)
            new_row.setdefault('updated_at', now)
            self._rows.append(new_row)
            stored.append(copy.deepcopy(new_row))
        return stored

    def update(self, match_field: str, match_value, values: Dict) -> List[Dict]:
        now = datetime.now(timezone.utc).isoformat()
        updated = []
        for row in self._rows:
            if self._matches(row, {match_field: match_value}):
                row.update(copy.deepcopy(values))
                row['updated_at'] = now
                updated.append(copy.deepcopy(row))
        return updated

    def clear(self) -> None:
        """Clear all rows from memory"""
        self._rows.clear()


class RepositoryFactory:
    """
    Factory class for creating repository instances

    This class provides a centralized way to create the repositories
    for each table based on configuration.
    """

    @staticmethod
    def create_supabase_client(url: str, key: str) -> Client:
        """
        Create a supabase client

        Raises:
            ValueError: If url or key is missing
        """
        if not url or not key:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY are required for the supabase backend")
        return create_client(url, key)

    @staticmethod
    def create_supabase_repository(client: Client, table: str) -> SupabaseRepository:
        return SupabaseRepository(client, table)

    @staticmethod
    def create_memory_repository(table: str, initial_rows: Optional[List[Dict]] = None) -> InMemoryRepository:
        return InMemoryRepository(table, initial_rows)

    @staticmethod
    def create_repository(repo_type: str, table: str, **kwargs) -> TableRepository:
        """
        Create a repository based on type

        Args:
            repo_type: Type of repository ('supabase' or 'memory')
            table: Table the repository wraps
            **kwargs: 'client' for supabase, 'initial_rows' for memory

        Returns:
            TableRepository instance

        Raises:
            ValueError: If repository type is not supported
        """
        if repo_type.lower() == 'supabase':
            if 'client' not in kwargs:
                raise ValueError("client is required for Supabase repository")
            return RepositoryFactory.create_supabase_repository(kwargs['client'], table)

        elif repo_type.lower() == 'memory':
            return RepositoryFactory.create_memory_repository(table, kwargs.get('initial_rows'))

        else:
            raise ValueError(f"Unsupported repository type: {repo_type}")
