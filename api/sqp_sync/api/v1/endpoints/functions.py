"""
Endpoint de invocacion de funciones de refresco.

Es el destino de las continuaciones HTTP: responde 202 de inmediato y
ejecuta la funcion en background.
"""
from fastapi import APIRouter, BackgroundTasks, Depends, status
from loguru import logger

from sqp_sync.api.v1.dependencies.use_case_deps import (
    get_continuation_dispatcher,
    get_function_runner,
)
from sqp_sync.application.dto.refresh_dto import FunctionAcceptedDTO, FunctionInvocationDTO
from sqp_sync.application.use_cases.function_use_cases import (
    RefreshFunctionRunner,
    resolve_function_table,
)
from sqp_sync.core.security import require_service_role
from sqp_sync.infrastructure.external.bigquery_sync.continuation import ContinuationDispatcher

router = APIRouter(prefix="/functions", tags=["Functions"], dependencies=[Depends(require_service_role)])


@router.post(
    "/{function_name}",
    response_model=FunctionAcceptedDTO,
    status_code=status.HTTP_202_ACCEPTED,
)
async def invoke_function(
    function_name: str,
    invocation: FunctionInvocationDTO,
    background_tasks: BackgroundTasks,
    runner: RefreshFunctionRunner = Depends(get_function_runner),
    dispatcher: ContinuationDispatcher = Depends(get_continuation_dispatcher),
):
    """
    Acepta la invocacion (404 si la funcion no existe) y la ejecuta en background.
    """
    payload = invocation.model_dump()
    table_name = resolve_function_table(function_name, payload)
    background_tasks.add_task(runner.run, function_name, payload, dispatcher)
    logger.info(f"Funcion {function_name} aceptada (audit={invocation.audit_log_id})")
    return FunctionAcceptedDTO(
        function_name=function_name,
        table_name=table_name,
        audit_log_id=invocation.audit_log_id,
    )
