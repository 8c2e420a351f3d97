"""
Human-like pointer movement.

Paths are cubic Bezier curves with control points pushed off the straight
line, sampled at a fixed step count, slower near both ends of the path
(acceleration / deceleration) and fast through the middle.
"""

import math
import random
from dataclasses import dataclass
from typing import List, Optional, Tuple

from scrape_governor.utils.humanize import Rhythm

Point = Tuple[float, float]

STEPS = 60
EDGE_STEPS = 10
CONTROL_OFFSET_PX = 100


@dataclass
class PathPoint:
    x: float
    y: float
    delay_ms: float


@dataclass
class Box:
    x: float
    y: float
    width: float
    height: float

    @property
    def center(self) -> Point:
        return (self.x + self.width / 2, self.y + self.height / 2)


def bezier_point(t: float, p0: Point, p1: Point, p2: Point, p3: Point) -> Point:
    """B(t) = (1-t)^3 P0 + 3(1-t)^2 t P1 + 3(1-t) t^2 P2 + t^3 P3"""
    mt = 1 - t
    mt2 = mt * mt
    mt3 = mt2 * mt
    t2 = t * t
    t3 = t2 * t
    x = mt3 * p0[0] + 3 * mt2 * t * p1[0] + 3 * mt * t2 * p2[0] + t3 * p3[0]
    y = mt3 * p0[1] + 3 * mt2 * t * p1[1] + 3 * mt * t2 * p2[1] + t3 * p3[1]
    return (x, y)


def control_points(start: Point, end: Point, offset_px: float = CONTROL_OFFSET_PX) -> Tuple[Point, Point]:
    """Two control points near 1/3 and 2/3 of the line, pushed sideways by up to offset_px."""
    dx = end[0] - start[0]
    dy = end[1] - start[1]
    length = math.hypot(dx, dy)
    if length == 0:
        nx, ny = 0.0, 1.0
    else:
        nx, ny = -dy / length, dx / length

    points = []
    for fraction in (1 / 3, 2 / 3):
        along = fraction + random.uniform(-0.1, 0.1)
        offset = random.uniform(-offset_px, offset_px)
        points.append((
            start[0] + dx * along + nx * offset,
            start[1] + dy * along + ny * offset,
        ))
    return points[0], points[1]


def step_delay_ms(step: int, total_steps: int) -> float:
    if step < EDGE_STEPS or step > total_steps - EDGE_STEPS:
        return random.random() * 15 + 10
    return random.random() * 5


def build_path(start: Point, end: Point, steps: int = STEPS) -> List[PathPoint]:
    cp1, cp2 = control_points(start, end)
    path = []
    for i in range(steps + 1):
        x, y = bezier_point(i / steps, start, cp1, cp2, end)
        path.append(PathPoint(x=x, y=y, delay_ms=step_delay_ms(i, steps)))
    return path


def random_point_in_box(box: Box, padding_px: float = 8) -> Point:
    """Random point inside the padded box so clicks don't always land dead centre."""
    inner_w = max(0.0, box.width - 2 * padding_px)
    inner_h = max(0.0, box.height - 2 * padding_px)
    return (
        box.x + padding_px + random.random() * inner_w,
        box.y + padding_px + random.random() * inner_h,
    )


class HumanMouse:
    def __init__(self, rhythm: Rhythm = None, steps: int = STEPS):
        self.rhythm = rhythm or Rhythm()
        self.steps = steps
        self.position: Optional[Point] = None

    async def _viewport_center(self, driver) -> Point:
        size = await driver.evaluate("() => ({w: window.innerWidth, h: window.innerHeight})")
        return (size["w"] / 2, size["h"] / 2)

    async def move_to(self, driver, x: float, y: float, start: Optional[Point] = None) -> List[PathPoint]:
        origin = start or self.position or await self._viewport_center(driver)
        path = build_path(origin, (x, y), self.steps)
        for point in path:
            await driver.mouse_move(point.x, point.y)
            await self.rhythm.pause(point.delay_ms)
        self.position = (x, y)
        return path

    async def click(self, driver, box: Box) -> Point:
        """Hover a random interior point, hesitate, then press and release with a human gap."""
        target = random_point_in_box(box)
        await self.move_to(driver, *target)
        await self.rhythm.wait_hesitate()
        await driver.mouse_down()
        await self.rhythm.wait_click_gap()
        await driver.mouse_up()
        return target
