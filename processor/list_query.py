"""Paginated event listing for the read API."""
import json
import logging
from typing import Any, Dict, Optional

from processor.pagination import CursorPaginator, InvalidCursorError
from storage.dynamodb_manager import DynamoDBManager

logger = logging.getLogger(__name__)

NEXT_PAGE_HEADER = 'X-Pagination-Next'

CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Credentials': 'true'
}


class ListQueryHandler:
    """Serves one page of events per request; the cursor travels in a response header."""

    def __init__(self, store: DynamoDBManager, paginator: Optional[CursorPaginator] = None):
        self.store = store
        self.paginator = paginator or CursorPaginator()

    def handle(self, query_params: Optional[Dict[str, str]]) -> Dict[str, Any]:
        """
        Build the API Gateway response for a list request.

        Args:
            query_params: Query string parameters (next, limit), may be None

        Returns:
            Response dict with statusCode, headers and JSON body
        """
        params = query_params or {}

        try:
            query = self.paginator.build_query(params.get('next'), params.get('limit'))
            page = self.store.find(query)
            next_cursor = self.paginator.next_cursor(page)

        except InvalidCursorError as e:
            logger.warning(f"Rejected pagination cursor: {e}")
            return self._error_response('invalid pagination cursor', 'invalid_cursor')

        except Exception as e:
            logger.error(
                f"Failed to list events: {str(e)}",
                extra={'error_type': type(e).__name__},
                exc_info=True
            )
            return self._error_response('unhandled error', 'internal_error')

        logger.info(
            f"Listed {len(page)} events",
            extra={'limit': query.limit, 'has_next': next_cursor is not None}
        )

        headers = dict(CORS_HEADERS)
        headers['Access-Control-Expose-Headers'] = NEXT_PAGE_HEADER
        if next_cursor is not None:
            headers[NEXT_PAGE_HEADER] = next_cursor

        return {
            'statusCode': 200,
            'headers': headers,
            'body': json.dumps([record.to_api_dict() for record in page], indent=2)
        }

    def _error_response(self, message: str, code: str) -> Dict[str, Any]:
        return {
            'statusCode': 500,
            'headers': dict(CORS_HEADERS),
            'body': json.dumps({'message': message, 'error': code})
        }
