"""
Agent selection for a tick.

A die with `dice_sides` faces decides how many of the active roster speak;
the roster is shuffled and the first `count` are taken. Agents with a
pending question addressed to them get a reserved slot on top of that.

Selection is synchronous and finishes before any concurrent dispatch
starts. Only the resulting plain id list is handed to the fan-out.
"""

import random
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence


@dataclass
class Selection:
	"""Which agents speak this tick and why."""
	roll: int
	dice_selected: list[str] = field(default_factory=list)
	reserved: list[str] = field(default_factory=list)

	@property
	def selected(self) -> list[str]:
		return self.dice_selected + self.reserved


def roll_dice(dice_sides: int, rng: random.Random) -> int:
	"""Roll uniformly in 1..=dice_sides (a die always has at least one side)."""
	return rng.randint(1, max(1, dice_sides))


def select_agents(
	roster: Sequence[str],
	dice_sides: int,
	reserved_candidates: Iterable[str] = (),
	rng: Optional[random.Random] = None,
) -> Selection:
	"""
	Pick the agents that participate in a tick.

	Args:
		roster: Active agent ids for the document
		dice_sides: Size of the die bounding how many agents speak
		reserved_candidates: Agents with pending questions addressed to them
		rng: Random source (a fresh one if omitted)

	Returns:
		Selection with dice-selected agents first, then reserved ones
	"""
	if not roster:
		return Selection(roll=0)

	rng = rng or random.Random()
	roll = roll_dice(dice_sides, rng)
	count = min(roll, len(roster))

	shuffled = list(roster)
	rng.shuffle(shuffled)
	dice_selected = shuffled[:count]

	wanted = set(reserved_candidates)
	chosen = set(dice_selected)
	reserved = [agent for agent in roster if agent in wanted and agent not in chosen]

	return Selection(roll=roll, dice_selected=dice_selected, reserved=reserved)
