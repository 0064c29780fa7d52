from fastapi import APIRouter

from lrtools.schemas.archive import ArchiveRequest
from lrtools.schemas.common import ResponseModel
from lrtools.utils.archiver import protect_file

router = APIRouter()


@router.post("", response_model=ResponseModel)
def create_protected_archive(archive_data: ArchiveRequest):
    """用密码保护的zip打包文件"""
    result = protect_file(archive_data)

    return ResponseModel(
        code=0 if result.success else 1,
        message="打包成功" if result.success else "打包失败",
        data=result
    )
