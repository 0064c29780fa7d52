from fastapi import APIRouter, Depends, HTTPException, BackgroundTasks, Request

from lrtools.schemas.capture import CaptureRequest
from lrtools.schemas.common import ResponseModel
from lrtools.utils.pktmon import PktmonClient
from lrtools.utils.capture_controller import CaptureController
from lrtools.utils.capture_tasks import CaptureTaskManager, CaptureBusyError

router = APIRouter()


def get_pktmon_client() -> PktmonClient:
    return PktmonClient()


def get_capture_controller(pktmon: PktmonClient = Depends(get_pktmon_client)) -> CaptureController:
    return CaptureController(pktmon)


def get_capture_tasks(request: Request) -> CaptureTaskManager:
    return request.app.state.capture_tasks


@router.post("/start", response_model=ResponseModel)
def start_capture(
    capture_data: CaptureRequest,
    background_tasks: BackgroundTasks,
    controller: CaptureController = Depends(get_capture_controller),
    tasks: CaptureTaskManager = Depends(get_capture_tasks)
):
    """开始抓包"""
    try:
        task = tasks.submit(capture_data)
    except CaptureBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))

    # 在后台执行抓包任务
    background_tasks.add_task(tasks.execute, task, controller)

    return ResponseModel(
        code=0,
        message="抓包任务已启动",
        data={"task_id": task.task_id}
    )


@router.get("/status/{task_id}", response_model=ResponseModel)
def get_capture_status(task_id: str, tasks: CaptureTaskManager = Depends(get_capture_tasks)):
    """查询抓包任务状态"""
    task = tasks.get(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="任务不存在")

    return ResponseModel(
        code=0,
        message="获取任务状态成功",
        data=task.to_response()
    )


@router.post("/cancel/{task_id}", response_model=ResponseModel)
def cancel_capture(task_id: str, tasks: CaptureTaskManager = Depends(get_capture_tasks)):
    """提前结束抓包等待, 随后仍会停止抓包并转换文件"""
    if tasks.get(task_id) is None:
        raise HTTPException(status_code=404, detail="任务不存在")
    if not tasks.cancel(task_id):
        raise HTTPException(status_code=409, detail="任务已结束")

    return ResponseModel(code=0, message="已请求取消抓包")


@router.get("/filters", response_model=ResponseModel)
def list_capture_filters(pktmon: PktmonClient = Depends(get_pktmon_client)):
    """查看当前pktmon过滤器"""
    result = pktmon.list_filters()
    if not result["success"]:
        raise HTTPException(status_code=500, detail=f"获取过滤器失败: {result['stderr'].strip()}")

    return ResponseModel(
        code=0,
        message="获取过滤器成功",
        data={"output": result["stdout"]}
    )
