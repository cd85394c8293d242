"""
동기화 파이프라인 예외 클래스

모든 실패 경로는 HTTP 오류 응답 또는 sync_status.error 기록 중 하나로 끝납니다.
"""
from typing import Any, Dict, Optional


class SyncError(Exception):
    """
    Base exception for all sync errors

    Attributes:
        message: 에러 메시지
        error_code: 에러 코드
        context: 추가 컨텍스트 정보
    """

    http_status: int = 500

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.context = context or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """에러 정보를 딕셔너리로 변환"""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
        }


class ConfigurationError(SyncError):
    """필수 환경 변수 누락. I/O 이전에 발생합니다."""

    def __init__(self, missing: list[str]):
        super().__init__(
            message=f"Missing env vars: {', '.join(missing)}",
            error_code="CONFIGURATION_ERROR",
            context={"missing": list(missing)},
        )
        self.missing = list(missing)


class UpstreamFetchError(SyncError):
    """
    MoySklad API 호출 실패 (non-2xx 또는 네트워크 오류)

    Attributes:
        status_code: HTTP 상태 코드 (네트워크 오류면 None)
        url: 요청 URL
        response_body: 응답 본문
    """

    http_status = 502

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        url: Optional[str] = None,
        response_body: Optional[str] = None,
    ):
        super().__init__(
            message=message,
            error_code="UPSTREAM_FETCH_ERROR",
            context={"status_code": status_code, "url": url, "response_body": response_body},
        )
        self.status_code = status_code
        self.url = url
        self.response_body = response_body


class StorageError(SyncError):
    """
    DB upsert/delete/select 실패

    Attributes:
        table_name: 영향받은 테이블 이름
        operation: 수행하려던 작업 (upsert, delete, select)
        row_count: 시도한 행 수
    """

    def __init__(
        self,
        message: str,
        table_name: Optional[str] = None,
        operation: Optional[str] = None,
        row_count: int = 0,
    ):
        super().__init__(
            message=message,
            error_code="STORAGE_ERROR",
            context={"table_name": table_name, "operation": operation, "row_count": row_count},
        )
        self.table_name = table_name
        self.operation = operation
        self.row_count = row_count


class SyncInProgressError(SyncError):
    """같은 엔티티의 동기화가 이미 실행 중"""

    http_status = 409

    def __init__(self, entity: str):
        super().__init__(
            message=f"{entity} sync is already running",
            error_code="SYNC_IN_PROGRESS",
            context={"entity": entity},
        )
        self.entity = entity


class WebhookPayloadError(SyncError):
    """웹훅 본문이 올바른 JSON 객체가 아님"""

    http_status = 400

    def __init__(self, message: str = "Invalid JSON body"):
        super().__init__(message=message, error_code="WEBHOOK_PAYLOAD_ERROR")
