from fastapi import APIRouter

from lrtools.schemas.command import CommandRequest
from lrtools.schemas.common import ResponseModel
from lrtools.utils.command_runner import run_command

router = APIRouter()


@router.post("", response_model=ResponseModel)
def execute_command(command_data: CommandRequest):
    """执行命令并返回输出"""
    result = run_command(command_data, echo=False)

    return ResponseModel(
        code=0 if result.success else 1,
        message="命令执行完成" if result.success else "命令执行失败",
        data=result
    )
