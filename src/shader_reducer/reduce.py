from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Optional, Tuple

from .config import ReducerSettings, check_usage
from .dispatch import ShaderDispatcher, build_dispatcher
from .driver import ReductionDriver, ReductionResult
from .errors import UsageError
from .judges import FileJudge, build_judge
from .opportunities import ReductionOpportunityContext
from .program import METADATA_EXTENSION, ShadingLanguageVersion, load_program
from .resume import resume_point
from .state import ReductionState
from .utils import ensure_dir
from .writer import ReductionStateFileWriter

logger = logging.getLogger(__name__)

REFERENCE_IMAGE_NAME = "reference_image.png"


def _inside(directory: Path, path: Path) -> bool:
    return path.resolve().parent == directory.resolve()


def prepare_work_dir(
    fragment_shader: Path, work_dir: Path, reference_image: Optional[Path] = None
) -> Tuple[Path, Optional[Path]]:
    ensure_dir(work_dir)
    shader = fragment_shader
    if not _inside(work_dir, fragment_shader):
        shader = work_dir / fragment_shader.name
        shutil.copyfile(fragment_shader, shader)
        shutil.copyfile(
            fragment_shader.with_suffix(METADATA_EXTENSION), shader.with_suffix(METADATA_EXTENSION)
        )
    reference = reference_image
    if reference_image is not None and not _inside(work_dir, reference_image):
        reference = work_dir / REFERENCE_IMAGE_NAME
        shutil.copyfile(reference_image, reference)
    return shader, reference


def do_reduction(
    fragment_shader: Path,
    judge: FileJudge,
    work_dir: Path,
    settings: ReducerSettings,
) -> ReductionResult:
    version = ShadingLanguageVersion.from_source(fragment_shader.read_text(encoding="utf-8"))
    logger.debug("shading language version %s", version)
    point = resume_point(fragment_shader, work_dir, settings.continue_previous_reduction)
    program = load_program(point.starting_shader)
    if point.resumed:
        logger.info(
            "continuing previous reduction from %s at step %d",
            point.starting_shader.name,
            point.next_step,
        )
        state = ReductionState(program=program)
    else:
        state = ReductionState.initial(program)
    context = ReductionOpportunityContext.create(
        settings.seed, version, reduce_everywhere=settings.reduce_everywhere
    )
    driver = ReductionDriver(
        context,
        judge,
        ReductionStateFileWriter(work_dir),
        state,
        keep_rejected=settings.keep_rejected,
        stop_on_error=settings.stop_on_error,
    )
    return driver.do_reduction(fragment_shader.stem, point.next_step, settings.max_steps)


def run_reduction(
    fragment_shader: Path,
    settings: ReducerSettings,
    work_dir: Path,
    dispatcher: Optional[ShaderDispatcher] = None,
) -> ReductionResult:
    check_usage(settings, fragment_shader, work_dir)
    shader, reference = prepare_work_dir(fragment_shader, work_dir, settings.reference_image)
    try:
        judge = build_judge(
            settings,
            dispatcher or build_dispatcher(settings),
            work_dir,
            reference_image=reference,
        )
        return do_reduction(shader, judge, work_dir, settings)
    except UsageError:
        raise
    except Exception as exc:
        dump = ReductionStateFileWriter(work_dir).write_exception(shader.stem, exc)
        logger.error("reduction failed, details in %s", dump.path)
        raise
