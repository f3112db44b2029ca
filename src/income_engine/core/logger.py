#!/usr/bin/env python3
"""
📝 INCOME SIGNAL ENGINE - STRUCTURED LOGGING
src/income_engine/core/logger.py

Structured, component-scoped logging for the analysis engine with
performance metric aggregation and optional CloudWatch custom metrics.

Features:
- JSON-lines structured logs with component/symbol/execution context
- Lambda-optimized compact formatter
- Operation timers and execution-time decorator
- Per-metric performance aggregation (count/avg/min/max/latest)
- Opt-in CloudWatch metrics via boto3 (CLOUDWATCH_METRICS_ENABLED=true)

Author: Income Signal Engine
Version: 1.0.0
"""

import logging
import sys
import json
import time
import traceback
import threading
import functools
import os
from datetime import datetime, timezone
from typing import Dict, Optional, Any
from dataclasses import dataclass, asdict
from enum import Enum
from contextlib import contextmanager
from collections import defaultdict, deque

import boto3
from botocore.exceptions import BotoCoreError, ClientError

METRICS_BATCH_SIZE = 20
PERFORMANCE_SAMPLE_LIMIT = 1000

# ============================================================================
# LOGGING ENUMS AND TYPES
# ============================================================================

class LogCategory(Enum):
    """Log categories for organization"""
    SYSTEM = "system"
    ANALYSIS = "analysis"
    REBALANCING = "rebalancing"
    CACHE = "cache"
    MARKET_DATA = "market_data"
    API = "api"
    PERFORMANCE = "performance"

@dataclass
class LogContext:
    """Contextual information for logs"""
    execution_id: Optional[str] = None
    component: Optional[str] = None
    operation: Optional[str] = None
    symbol: Optional[str] = None

@dataclass
class PerformanceMetric:
    """Performance metric for logging"""
    metric_name: str
    value: float
    unit: str
    timestamp: datetime
    component: str
    operation: Optional[str] = None
    additional_data: Optional[Dict[str, Any]] = None

class MetricSeries:
    """Lifetime count/total/min/max plus a bounded window of recent samples"""

    def __init__(self, sample_limit: int = PERFORMANCE_SAMPLE_LIMIT):
        self.samples = deque(maxlen=sample_limit)
        self.count = 0
        self.total = 0.0
        self.min = None
        self.max = None

    def add(self, value: float):
        self.samples.append(value)
        self.count += 1
        self.total += value
        self.min = value if self.min is None else min(self.min, value)
        self.max = value if self.max is None else max(self.max, value)

    def summary(self) -> Dict[str, Any]:
        return {
            'count': self.count,
            'average': self.total / self.count,
            'min': self.min,
            'max': self.max,
            'latest': self.samples[-1],
            'recent_average': sum(self.samples) / len(self.samples)
        }

# ============================================================================
# CLOUDWATCH INTEGRATION
# ============================================================================

class CloudWatchMetricsHandler:
    """
    Buffers engine metrics and forwards them to CloudWatch in batches when
    enabled. A datapoint is sent exactly once: when the buffer fills a batch
    or on flush.

    The client is only created when CLOUDWATCH_METRICS_ENABLED is true, so
    local runs and tests never need AWS credentials or a region.
    """

    def __init__(self, namespace: str = "IncomeSignalEngine", enabled: Optional[bool] = None):
        self.namespace = namespace
        self.metrics_buffer = deque(maxlen=1000)
        self._lock = threading.RLock()
        self.cloudwatch = None

        if enabled is None:
            enabled = os.environ.get('CLOUDWATCH_METRICS_ENABLED', 'false').lower() == 'true'

        if enabled:
            self.cloudwatch = boto3.client(
                'cloudwatch',
                region_name=os.environ.get('AWS_REGION', 'us-east-1')
            )

    def put_metric(self, metric_name: str, value: float, unit: str = 'Count',
                   dimensions: Optional[Dict[str, str]] = None):
        """Buffer a metric, sending a full batch when CloudWatch is enabled"""

        metric_data = {
            'MetricName': metric_name,
            'Value': value,
            'Unit': unit,
            'Timestamp': datetime.now(timezone.utc)
        }

        if dimensions:
            metric_data['Dimensions'] = [
                {'Name': k, 'Value': v} for k, v in dimensions.items()
            ]

        with self._lock:
            self.metrics_buffer.append(metric_data)
            batch_ready = len(self.metrics_buffer) >= METRICS_BATCH_SIZE

        if self.cloudwatch and batch_ready:
            self.flush_metrics()

    def flush_metrics(self):
        """Drain the buffer, sending it to CloudWatch in batches when enabled"""

        with self._lock:
            metrics_to_send = list(self.metrics_buffer)
            self.metrics_buffer.clear()

        if not self.cloudwatch or not metrics_to_send:
            return

        try:
            for i in range(0, len(metrics_to_send), METRICS_BATCH_SIZE):
                self.cloudwatch.put_metric_data(
                    Namespace=self.namespace,
                    MetricData=metrics_to_send[i:i + METRICS_BATCH_SIZE]
                )
        except (BotoCoreError, ClientError) as e:
            logging.getLogger('income_engine.metrics').debug(
                "CloudWatch flush failed: %s", e
            )

# ============================================================================
# LOG FORMATTERS
# ============================================================================

class EngineJsonFormatter(logging.Formatter):
    """JSON-lines formatter carrying the engine's structured context"""

    def format(self, record: logging.LogRecord) -> str:

        log_data = {
            'timestamp': datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            'level': record.levelname,
            'component': getattr(record, 'component', 'unknown'),
            'category': getattr(record, 'category', 'system'),
            'logger': record.name,
            'message': record.getMessage()
        }

        for attr in ('execution_id', 'operation', 'symbol', 'execution_time'):
            if hasattr(record, attr):
                log_data[attr] = getattr(record, attr)

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info)
            }

        if hasattr(record, 'performance_data'):
            log_data['performance'] = record.performance_data

        if hasattr(record, 'custom_fields'):
            log_data.update(record.custom_fields)

        if record.levelno >= logging.ERROR:
            log_data['location'] = f"{record.filename}:{record.lineno}"
            log_data['function'] = record.funcName

        return json.dumps(log_data, default=str, separators=(',', ':'))

class LambdaFormatter(logging.Formatter):
    """Compact single-line formatter for Lambda CloudWatch logs"""

    def format(self, record: logging.LogRecord) -> str:

        timestamp = datetime.fromtimestamp(record.created, timezone.utc).strftime('%H:%M:%S.%f')[:-3]
        component = getattr(record, 'component', 'system')

        base_msg = f"{timestamp} | {record.levelname:8s} | {component:16s} | {record.getMessage()}"

        context_parts = []
        if hasattr(record, 'execution_id'):
            context_parts.append(f"exec_id={record.execution_id[:8]}")
        if hasattr(record, 'symbol'):
            context_parts.append(f"symbol={record.symbol}")
        if hasattr(record, 'execution_time'):
            context_parts.append(f"time={record.execution_time:.3f}s")

        if context_parts:
            base_msg += f" | {' '.join(context_parts)}"

        return base_msg

# ============================================================================
# ENGINE LOGGER
# ============================================================================

class ProductionLogger:
    """
    Component logger for the analysis engine

    Keyword arguments passed to any log method are attached to the record
    as structured fields. A ``symbol`` keyword is promoted to the record's
    symbol context.
    """

    def __init__(self, component: str, category: LogCategory = LogCategory.SYSTEM,
                 metrics_handler: Optional[CloudWatchMetricsHandler] = None):
        self.component = component
        self.category = category
        self.logger = logging.getLogger(f"income_engine.{component}")

        self.performance_metrics = defaultdict(MetricSeries)

        self.current_context = LogContext(component=component)
        self._context_stack = []
        self._lock = threading.RLock()

        self.cloudwatch_handler = metrics_handler or CloudWatchMetricsHandler()

        if not self.logger.handlers:
            self._setup_logger()

    def _setup_logger(self):
        """Attach a stdout handler with the environment-appropriate formatter"""

        log_level = os.environ.get('LOG_LEVEL', 'INFO').upper()
        self.logger.setLevel(getattr(logging, log_level, logging.INFO))

        console_handler = logging.StreamHandler(sys.stdout)

        if os.environ.get('AWS_LAMBDA_FUNCTION_NAME'):
            formatter = LambdaFormatter()
        else:
            formatter = EngineJsonFormatter()

        console_handler.setFormatter(formatter)
        self.logger.addHandler(console_handler)

        # Keep propagation on so pytest's caplog and host applications see records
        self.logger.propagate = True

    def _emit(self, level: int, message: str, exc_info=None, **kwargs):
        if not self.logger.isEnabledFor(level):
            return

        record = self.logger.makeRecord(
            self.logger.name, level, __file__, 0, message, (), exc_info
        )
        record.component = self.component
        record.category = self.category.value

        if self.current_context.execution_id:
            record.execution_id = self.current_context.execution_id
        if self.current_context.operation:
            record.operation = self.current_context.operation

        symbol = kwargs.pop('symbol', None) or self.current_context.symbol
        if symbol:
            record.symbol = symbol

        if 'execution_time' in kwargs:
            record.execution_time = kwargs.pop('execution_time')

        if kwargs:
            record.custom_fields = kwargs

        self.logger.handle(record)

    # ========================================================================
    # CORE LOGGING METHODS
    # ========================================================================

    def debug(self, message: str, **kwargs):
        self._emit(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        self._emit(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._emit(logging.WARNING, message, **kwargs)
        self.cloudwatch_handler.put_metric(
            'WarningCount', 1, 'Count',
            {'Component': self.component, 'Category': self.category.value}
        )

    def error(self, message: str, **kwargs):
        self._emit(logging.ERROR, message, **kwargs)
        self.cloudwatch_handler.put_metric(
            'ErrorCount', 1, 'Count',
            {'Component': self.component, 'Category': self.category.value}
        )

    def exception(self, message: str, **kwargs):
        """Log an error with the active exception's traceback"""
        self._emit(logging.ERROR, message, exc_info=sys.exc_info(), **kwargs)

    # ========================================================================
    # SPECIALIZED LOGGING METHODS
    # ========================================================================

    def performance(self, metric: PerformanceMetric):
        """Record and log a performance metric"""
        with self._lock:
            self.performance_metrics[metric.metric_name].add(metric.value)

        record = self.logger.makeRecord(
            self.logger.name, logging.DEBUG, __file__, 0,
            f"PERFORMANCE: {metric.metric_name} = {metric.value:.4f} {metric.unit}", (), None
        )
        record.component = self.component
        record.category = LogCategory.PERFORMANCE.value
        record.performance_data = asdict(metric)
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.handle(record)

        self.cloudwatch_handler.put_metric(
            metric.metric_name, metric.value, 'Seconds' if metric.unit == 'seconds' else 'None',
            {'Component': metric.component}
        )

    def api_call(self, provider: str, endpoint: str, response_time: float,
                 status_code: int, **kwargs):
        """Log an outbound collaborator call"""

        level = logging.INFO if status_code < 400 else logging.WARNING
        self._emit(
            level,
            f"API: {provider} {endpoint} - {status_code} ({response_time:.3f}s)",
            execution_time=response_time,
            provider=provider,
            endpoint=endpoint,
            status_code=status_code,
            **kwargs
        )

        self.cloudwatch_handler.put_metric(
            'ApiResponseTime', response_time, 'Seconds',
            {'Provider': provider}
        )
        if status_code >= 400:
            self.cloudwatch_handler.put_metric(
                'ApiError', 1, 'Count',
                {'Provider': provider, 'StatusCode': str(status_code)}
            )

    # ========================================================================
    # CONTEXT MANAGEMENT
    # ========================================================================

    @contextmanager
    def execution_context(self, execution_id: str, operation: str = None):
        """Scope subsequent records to an execution id and operation"""

        with self._lock:
            self._context_stack.append(self.current_context)
            self.current_context = LogContext(
                execution_id=execution_id,
                component=self.component,
                operation=operation
            )

        start_time = time.time()

        try:
            yield
        finally:
            execution_time = time.time() - start_time
            self.debug(f"Execution completed: {operation or 'unknown'}",
                       execution_time=execution_time)

            with self._lock:
                if self._context_stack:
                    self.current_context = self._context_stack.pop()

    @contextmanager
    def operation_timer(self, operation: str):
        """Time a block and record it as ``<operation>_duration``"""

        start_time = time.time()

        try:
            yield
        finally:
            execution_time = time.time() - start_time
            self.performance(PerformanceMetric(
                metric_name=f"{operation}_duration",
                value=execution_time,
                unit="seconds",
                timestamp=datetime.now(timezone.utc),
                component=self.component,
                operation=operation
            ))

    # ========================================================================
    # METRICS AND MONITORING
    # ========================================================================

    def get_performance_summary(self) -> Dict[str, Any]:
        """Aggregate recorded metrics per name"""

        with self._lock:
            summary = {
                metric_name: series.summary()
                for metric_name, series in self.performance_metrics.items()
                if series.count
            }

            return {
                'component': self.component,
                'metrics': summary,
                'timestamp': datetime.now(timezone.utc).isoformat()
            }

    def flush_metrics(self):
        self.cloudwatch_handler.flush_metrics()

# ============================================================================
# LOGGING DECORATORS
# ============================================================================

def log_execution_time(logger: ProductionLogger, operation: str = None):
    """Decorator recording a function's wall time as a performance metric"""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            with logger.operation_timer(operation or func.__name__):
                return func(*args, **kwargs)

        return wrapper
    return decorator

# ============================================================================
# LOGGER FACTORY
# ============================================================================

class LoggerFactory:
    """Process-wide registry of component loggers"""

    _loggers = {}
    _lock = threading.RLock()

    @classmethod
    def get_logger(cls, component: str, category: LogCategory = LogCategory.SYSTEM) -> ProductionLogger:
        """Get or create the logger for a component"""

        logger_key = f"{component}_{category.value}"

        with cls._lock:
            if logger_key not in cls._loggers:
                cls._loggers[logger_key] = ProductionLogger(component, category)

            return cls._loggers[logger_key]

    @classmethod
    def flush_all_metrics(cls):
        with cls._lock:
            for logger in cls._loggers.values():
                logger.flush_metrics()

    @classmethod
    def get_all_performance_summaries(cls) -> Dict[str, Any]:
        with cls._lock:
            return {
                logger_key: logger.get_performance_summary()
                for logger_key, logger in cls._loggers.items()
            }
