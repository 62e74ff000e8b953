import json
import logging
import traceback
from collections import defaultdict, deque
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional, Tuple


@dataclass
class ErrorContext:
    """Context for a non-fatal error occurrence"""
    error_type: str
    error_message: str
    stack_trace: str
    timestamp: datetime
    service: str
    operation: str
    feed_url: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        data.pop('stack_trace', None)
        return data


class FeedErrorLog:
    """
    Records per-feed failures that must not abort the surrounding operation.

    Search and aggregation both treat a broken feed as an empty contribution;
    this keeps the evidence so operators can see which feeds keep failing.
    """

    def __init__(self, max_history: int = 100) -> None:
        self.error_history: Deque[ErrorContext] = deque(maxlen=max_history)
        self.error_counts: Dict[str, int] = defaultdict(int)
        self.feed_failures: Dict[str, int] = defaultdict(int)
        self.logger = logging.getLogger(__name__)

    def record(
        self,
        error: Exception,
        service: str,
        operation: str,
        feed_url: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ) -> ErrorContext:
        error_type = type(error).__name__
        error_context = ErrorContext(
            error_type=error_type,
            error_message=str(error),
            stack_trace=''.join(traceback.format_exception(type(error), error, error.__traceback__)),
            timestamp=datetime.now(),
            service=service,
            operation=operation,
            feed_url=feed_url,
            metadata=context or {},
        )

        self.error_history.append(error_context)
        self.error_counts[error_type] += 1
        if feed_url:
            self.feed_failures[feed_url] += 1

        # Structured log for error
        self.logger.warning(json.dumps({
            'event': 'feed_error',
            'service': service,
            'operation': operation,
            'feed_url': feed_url,
            'error_type': error_type,
            'error_message': str(error),
            'timestamp': error_context.timestamp.isoformat(),
        }))
        return error_context

    def recent(self, limit: int = 20) -> List[ErrorContext]:
        return list(self.error_history)[-limit:]

    def detect_error_patterns(self) -> List[str]:
        patterns: List[str] = []
        if not self.error_history:
            return patterns

        # Count repeated (error_type, feed)
        tuple_counts: Dict[Tuple[str, str], int] = defaultdict(int)
        for ctx in self.error_history:
            tuple_counts[(ctx.error_type, ctx.feed_url or ctx.service)] += 1

        for (etype, where), count in tuple_counts.items():
            if count >= 3:
                patterns.append(
                    f"Repeated pattern: {etype} for {where} occurred {count} times recently"
                )

        return patterns

    def get_error_statistics(self) -> Dict[str, Any]:
        total = sum(self.error_counts.values())
        return {
            'total_errors': total,
            'error_types': dict(self.error_counts),
            'failing_feeds': dict(self.feed_failures),
        }

    def clear(self) -> None:
        self.error_history.clear()
        self.error_counts.clear()
        self.feed_failures.clear()
