"""Tests for the heartbeat tick: selection, fan-out, reconciliation and persistence."""

import asyncio

import pytest
import pytest_asyncio

from grove.errors import DocumentNotFoundError, InvocationError
from grove.heartbeat.tick import TREE_ONLY_REPLY, Heartbeat, HeartbeatRunner
from grove.storage.database import Database
from grove.tree.models import PendingQuestion, default_tree
from grove.tree.mutations import AddEdge, AddNode, RaiseQuestion, UpdateNode

from .helpers import ScriptedInvoker, ScriptedRandom, sample_edges, sample_tree, shape

DOC = "doc"


@pytest_asyncio.fixture
async def db(tmp_path):
	database = Database(str(tmp_path / "grove.db"))
	await database.init()
	await database.create_document(DOC)
	return database


async def seed_tree(db: Database):
	await db.update_tree(DOC, sample_tree(), sample_edges())


class TestDefaultPass:
	@pytest.mark.asyncio
	async def test_empty_roster_runs_single_default_pass(self, db):
		invoker = ScriptedInvoker({None: [
			"Starting the tree.",
			AddNode(parent_id="root", id="idea", label="Idea", prose="p"),
		]})
		heartbeat = Heartbeat(db, invoker, rng=ScriptedRandom([]))

		result = await heartbeat.run_tick(DOC)

		assert result.default_pass is True
		assert result.results == []
		assert result.changed is True
		assert result.thinking == "Starting the tree."
		assert len(invoker.requests) == 1
		assert invoker.requests[0].personality is None

		stored = await db.get_document(DOC)
		assert stored.tree.id == "idea"
		assert stored.tree.by == "claude"
		[message] = await db.get_messages(DOC, 10)
		assert message.content == "Starting the tree."
		assert message.personality is None

	@pytest.mark.asyncio
	async def test_no_change_leaves_tree_alone(self, db):
		await seed_tree(db)
		before = await db.get_document(DOC)
		heartbeat = Heartbeat(db, ScriptedInvoker({None: ["Looks fine."]}))

		result = await heartbeat.run_tick(DOC)

		assert result.changed is False
		assert result.tree == sample_tree()
		after = await db.get_document(DOC)
		assert after.updated_at == before.updated_at

	@pytest.mark.asyncio
	async def test_default_pass_failure_propagates(self, db):
		heartbeat = Heartbeat(db, ScriptedInvoker({None: InvocationError("down")}))
		with pytest.raises(InvocationError):
			await heartbeat.run_tick(DOC)
		assert (await db.get_document(DOC)).tree == default_tree()

	@pytest.mark.asyncio
	async def test_unresolvable_selection_falls_back_to_default_pass(self, db):
		await db.set_personalities(DOC, ["ghost"])
		await db.insert_questions([
			PendingQuestion(doc_id=DOC, from_agent="feynman", to_agent="ghost", question="Anyone there?"),
		])
		invoker = ScriptedInvoker({None: ["Default voice."]})
		heartbeat = Heartbeat(db, invoker, rng=ScriptedRandom([1]))

		result = await heartbeat.run_tick(DOC)

		assert result.default_pass is True
		assert result.selected == ["ghost"]
		assert invoker.requests[0].personality is None
		assert await db.get_reserved_agents(DOC) == []

	@pytest.mark.asyncio
	async def test_unknown_document(self, db):
		heartbeat = Heartbeat(db, ScriptedInvoker())
		with pytest.raises(DocumentNotFoundError):
			await heartbeat.run_tick("missing")

	@pytest.mark.asyncio
	async def test_reused_id_is_not_persisted(self, db):
		"""A default-pass add_node reusing an existing id leaves the stored ids unique."""
		await seed_tree(db)
		invoker = ScriptedInvoker({None: [AddNode(parent_id="b", id="a1", label="Dup")]})

		await Heartbeat(db, invoker).run_tick(DOC)

		stored = await db.get_document(DOC)
		assert [n.id for _, n in stored.tree.walk()] == ["seed", "a", "a1", "a2", "b"]
		assert stored.tree.find("a1").label == "A1"


class TestMultiAgentTick:
	@pytest.mark.asyncio
	async def test_placeholder_replaced_by_first_agent(self, db):
		await db.set_personalities(DOC, ["feynman"])
		invoker = ScriptedInvoker({"feynman": [
			AddNode(parent_id="root", id="idea", label="Idea"),
			AddNode(parent_id="idea", id="why", label="Why?"),
		]})
		heartbeat = Heartbeat(db, invoker, rng=ScriptedRandom([1]))

		result = await heartbeat.run_tick(DOC)

		assert result.default_pass is False
		assert result.selected == ["feynman"]
		stored = await db.get_document(DOC)
		assert shape(stored.tree) == {(None, "idea"), ("idea", "why")}
		assert stored.tree.by == "agent:feynman"
		assert stored.tree.find("why").by == "agent:feynman"

	@pytest.mark.asyncio
	async def test_concurrent_additions_are_merged(self, db):
		await seed_tree(db)
		await db.set_personalities(DOC, ["feynman", "munger"])
		invoker = ScriptedInvoker({
			"feynman": ["Simplify.", AddNode(parent_id="a1", id="x", label="X")],
			"munger": ["Invert.", AddNode(parent_id="b", id="y", label="Y"), AddEdge(source="y", target="a2", label="costs")],
		}, delay=0.01)
		heartbeat = Heartbeat(db, invoker, rng=ScriptedRandom([6]))

		result = await heartbeat.run_tick(DOC)

		assert invoker.max_active == 2
		assert result.selected == ["feynman", "munger"]
		assert [r.personality for r in result.results] == ["feynman", "munger"]
		assert all(r.contributed for r in result.results)
		assert result.thinking == "**Feynman**: Simplify.\n\n**Charlie Munger**: Invert."

		stored = await db.get_document(DOC)
		assert {("a1", "x"), ("b", "y")} <= shape(stored.tree)
		assert stored.tree.find("x").by == "agent:feynman"
		assert stored.tree.find("y").by == "agent:munger"
		assert {e.pair for e in stored.edges} == {frozenset({"a1", "b"}), frozenset({"y", "a2"})}

	@pytest.mark.asyncio
	async def test_every_agent_sees_the_same_snapshot(self, db):
		await seed_tree(db)
		await db.set_personalities(DOC, ["feynman", "munger"])
		invoker = ScriptedInvoker({
			"feynman": [AddNode(parent_id="a", id="x")],
			"munger": [AddNode(parent_id="b", id="y")],
		})
		heartbeat = Heartbeat(db, invoker, rng=ScriptedRandom([6]))

		await heartbeat.run_tick(DOC)

		for request in invoker.requests:
			assert request.tree == sample_tree()

	@pytest.mark.asyncio
	async def test_failed_agent_is_isolated(self, db):
		await seed_tree(db)
		await db.set_personalities(DOC, ["feynman", "munger"])
		invoker = ScriptedInvoker({
			"feynman": InvocationError("rate limited"),
			"munger": [AddNode(parent_id="b", id="y")],
		})
		heartbeat = Heartbeat(db, invoker, rng=ScriptedRandom([6]))

		result = await heartbeat.run_tick(DOC)

		failed, ok = result.results
		assert failed.personality == "feynman"
		assert failed.error == "rate limited"
		assert failed.thinking == "(Error: rate limited)"
		assert failed.contributed is False
		assert ok.contributed is True
		assert (await db.get_document(DOC)).tree.find("y") is not None

	@pytest.mark.asyncio
	async def test_all_agents_failing_keeps_tree(self, db):
		await seed_tree(db)
		await db.set_personalities(DOC, ["feynman", "munger"])
		invoker = ScriptedInvoker({"feynman": RuntimeError("a"), "munger": RuntimeError("b")})
		heartbeat = Heartbeat(db, invoker, rng=ScriptedRandom([6]))

		result = await heartbeat.run_tick(DOC)

		assert result.changed is False
		assert all(r.error for r in result.results)
		assert (await db.get_document(DOC)).tree == sample_tree()

	@pytest.mark.asyncio
	async def test_updates_to_existing_nodes_do_not_persist(self, db):
		await seed_tree(db)
		await db.set_personalities(DOC, ["feynman"])
		invoker = ScriptedInvoker({"feynman": [UpdateNode(id="a", label="Renamed")]})
		heartbeat = Heartbeat(db, invoker, rng=ScriptedRandom([1]))

		result = await heartbeat.run_tick(DOC)

		assert result.results[0].contributed is True
		assert (await db.get_document(DOC)).tree.find("a").label == "A"

	@pytest.mark.asyncio
	async def test_agent_thinking_is_saved_with_personality(self, db):
		await seed_tree(db)
		await db.set_personalities(DOC, ["feynman", "munger"])
		invoker = ScriptedInvoker({"feynman": ["Hmm."], "munger": []})
		heartbeat = Heartbeat(db, invoker, rng=ScriptedRandom([6]))

		await heartbeat.run_tick(DOC)

		messages = await db.get_messages(DOC, 10)
		assert [(m.personality, m.content) for m in messages] == [("feynman", "Hmm.")]

	@pytest.mark.asyncio
	async def test_recent_transcript_is_passed_to_agents(self, db):
		await db.set_personalities(DOC, ["feynman"])
		for i in range(4):
			await db.add_message(DOC, "human", f"m{i}")
		invoker = ScriptedInvoker()
		heartbeat = Heartbeat(db, invoker, rng=ScriptedRandom([1]), history_limit=2)

		await heartbeat.run_tick(DOC)

		assert [m.content for m in invoker.requests[0].messages] == ["m2", "m3"]


class TestQuestions:
	@pytest.mark.asyncio
	async def test_questions_reserve_a_slot_and_expire(self, db):
		"""Questions raised on one tick are delivered on the next and then consumed."""
		await seed_tree(db)
		await db.set_personalities(DOC, ["feynman", "munger", "taleb"])
		invoker = ScriptedInvoker({
			"feynman": (
				[RaiseQuestion(to_agent="taleb", question="Where is the fragility?")],
				[],
			),
			"munger": [RaiseQuestion(to_agent="taleb", question="What would you invert?")],
			"taleb": ["Answering both."],
		})
		heartbeat = Heartbeat(db, invoker, rng=ScriptedRandom([2, 1, 1]))

		first = await heartbeat.run_tick(DOC)
		assert first.selected == ["feynman", "munger"]
		assert first.changed is False
		assert await db.get_reserved_agents(DOC) == ["taleb"]

		second = await heartbeat.run_tick(DOC)
		assert second.selected == ["feynman", "taleb"]
		[taleb_request] = invoker.requests_for("taleb")
		assert [q.question for q in taleb_request.questions] == [
			"Where is the fragility?",
			"What would you invert?",
		]
		assert [q.from_agent for q in taleb_request.questions] == ["feynman", "munger"]
		assert invoker.requests_for("feynman")[1].questions == []
		assert await db.get_reserved_agents(DOC) == []

		third = await heartbeat.run_tick(DOC)
		assert third.selected == ["feynman"]
		assert len(invoker.requests_for("taleb")) == 1

	@pytest.mark.asyncio
	async def test_questions_consumed_even_when_agent_fails(self, db):
		await db.set_personalities(DOC, ["feynman", "taleb"])
		await db.insert_questions([
			PendingQuestion(doc_id=DOC, from_agent="feynman", to_agent="taleb", question="q"),
		])
		invoker = ScriptedInvoker({"taleb": InvocationError("down")})
		heartbeat = Heartbeat(db, invoker, rng=ScriptedRandom([1]))

		result = await heartbeat.run_tick(DOC)

		assert result.selected == ["feynman", "taleb"]
		assert await db.get_reserved_agents(DOC) == []

	@pytest.mark.asyncio
	async def test_questions_for_agents_off_roster_stay_pending(self, db):
		await db.set_personalities(DOC, ["feynman"])
		await db.insert_questions([
			PendingQuestion(doc_id=DOC, from_agent="feynman", to_agent="jobs", question="q"),
		])
		heartbeat = Heartbeat(db, ScriptedInvoker(), rng=ScriptedRandom([1]))

		result = await heartbeat.run_tick(DOC)

		assert result.selected == ["feynman"]
		assert await db.get_reserved_agents(DOC) == ["jobs"]

	@pytest.mark.asyncio
	async def test_failed_agent_questions_are_not_queued(self, db):
		await db.set_personalities(DOC, ["feynman"])
		invoker = ScriptedInvoker({"feynman": RuntimeError("boom")})
		heartbeat = Heartbeat(db, invoker, rng=ScriptedRandom([1]))

		await heartbeat.run_tick(DOC)

		assert await db.get_reserved_agents(DOC) == []


class TestSerialization:
	@pytest.mark.asyncio
	async def test_ticks_for_one_document_do_not_overlap(self, db):
		await db.set_personalities(DOC, ["feynman"])
		invoker = ScriptedInvoker({"feynman": (
			[AddNode(parent_id="root", id="first")],
			[AddNode(parent_id="first", id="second")],
		)}, delay=0.02)
		heartbeat = Heartbeat(db, invoker, rng=ScriptedRandom([1, 1]))

		await asyncio.gather(heartbeat.run_tick(DOC), heartbeat.run_tick(DOC))

		assert invoker.max_active == 1
		assert invoker.requests[1].tree.id == "first"
		stored = await db.get_document(DOC)
		assert shape(stored.tree) == {(None, "first"), ("first", "second")}

	@pytest.mark.asyncio
	async def test_different_documents_run_concurrently(self, db):
		await db.create_document("other")
		invoker = ScriptedInvoker(delay=0.2)
		heartbeat = Heartbeat(db, invoker)

		await asyncio.gather(heartbeat.run_tick(DOC), heartbeat.run_tick("other"))

		assert invoker.max_active == 2


class TestChat:
	@pytest.mark.asyncio
	async def test_reply_and_edits_are_saved(self, db):
		await seed_tree(db)
		invoker = ScriptedInvoker({None: [
			"Good point, adding it.",
			AddNode(parent_id="a1", id="c1", label="C1", prose="p"),
		]})
		heartbeat = Heartbeat(db, invoker)

		result = await heartbeat.chat(DOC, "What follows from A1?", hover_node_id="a1")

		assert result.reply == "Good point, adding it."
		assert result.changed is True
		stored = await db.get_document(DOC)
		assert ("a1", "c1") in shape(stored.tree)
		assert stored.tree.find("c1").by == "claude"

		human, reply = await db.get_messages(DOC, 10)
		assert (human.role, human.content, human.hover_node_id) == ("human", "What follows from A1?", "a1")
		assert (reply.role, reply.content, reply.personality) == ("assistant", "Good point, adding it.", None)

	@pytest.mark.asyncio
	async def test_request_carries_message_hover_and_prior_transcript(self, db):
		await seed_tree(db)
		await db.add_message(DOC, "assistant", "Earlier thought.")
		invoker = ScriptedInvoker({None: ["Sure."]})

		await Heartbeat(db, invoker).chat(DOC, "Tell me more", hover_node_id="b")

		[request] = invoker.requests
		assert request.personality is None
		assert request.chat_message == "Tell me more"
		assert request.hover_node_id == "b"
		assert [m.content for m in request.messages] == ["Earlier thought."]

	@pytest.mark.asyncio
	async def test_silent_growth_gets_a_stock_reply(self, db):
		await seed_tree(db)
		invoker = ScriptedInvoker({None: [AddNode(parent_id="b", id="b1")]})

		result = await Heartbeat(db, invoker).chat(DOC, "Expand b")

		assert result.reply == TREE_ONLY_REPLY
		messages = await db.get_messages(DOC, 10)
		assert messages[-1].content == TREE_ONLY_REPLY

	@pytest.mark.asyncio
	async def test_nothing_to_say_stores_only_the_human_message(self, db):
		await seed_tree(db)
		before = await db.get_document(DOC)

		result = await Heartbeat(db, ScriptedInvoker({None: []})).chat(DOC, "Hello?")

		assert result.reply is None
		assert result.changed is False
		assert result.tree == sample_tree()
		assert [m.role for m in await db.get_messages(DOC, 10)] == ["human"]
		assert (await db.get_document(DOC)).updated_at == before.updated_at

	@pytest.mark.asyncio
	async def test_invocation_failure_keeps_human_message(self, db):
		await seed_tree(db)
		heartbeat = Heartbeat(db, ScriptedInvoker({None: InvocationError("down")}))

		with pytest.raises(InvocationError):
			await heartbeat.chat(DOC, "Still there?")

		[message] = await db.get_messages(DOC, 10)
		assert message.content == "Still there?"
		assert (await db.get_document(DOC)).tree == sample_tree()

	@pytest.mark.asyncio
	async def test_unknown_document(self, db):
		heartbeat = Heartbeat(db, ScriptedInvoker())
		with pytest.raises(DocumentNotFoundError):
			await heartbeat.chat("missing", "Hi")

	@pytest.mark.asyncio
	async def test_chat_waits_for_a_running_tick(self, db):
		invoker = ScriptedInvoker({None: (
			[AddNode(parent_id="root", id="first")],
			[AddNode(parent_id="first", id="second")],
		)}, delay=0.02)
		heartbeat = Heartbeat(db, invoker)

		await asyncio.gather(heartbeat.run_tick(DOC), heartbeat.chat(DOC, "And then?"))

		assert invoker.max_active == 1
		assert invoker.requests[1].tree.id == "first"
		stored = await db.get_document(DOC)
		assert shape(stored.tree) == {(None, "first"), ("first", "second")}


class TestHeartbeatRunner:
	@pytest.mark.asyncio
	async def test_runs_requested_ticks(self, db):
		seen = []

		async def on_tick(result):
			seen.append(result)

		heartbeat = Heartbeat(db, ScriptedInvoker({None: ["ok"]}))
		runner = HeartbeatRunner(heartbeat, DOC, interval=0.0, on_tick=on_tick)

		assert await runner.run(max_ticks=3) == 3
		assert len(seen) == 3

	@pytest.mark.asyncio
	async def test_failed_ticks_do_not_stop_the_runner(self, db):
		invoker = ScriptedInvoker({None: (InvocationError("down"), ["ok"])})
		runner = HeartbeatRunner(Heartbeat(db, invoker), DOC, interval=0.0)

		assert await runner.run(max_ticks=3) == 2
		assert len(invoker.requests) == 3

	@pytest.mark.asyncio
	async def test_missing_document_stops_the_runner(self, db):
		runner = HeartbeatRunner(Heartbeat(db, ScriptedInvoker()), "missing", interval=0.0)
		with pytest.raises(DocumentNotFoundError):
			await runner.run(max_ticks=3)

	@pytest.mark.asyncio
	async def test_stop_ends_the_loop(self, db):
		runner = HeartbeatRunner(Heartbeat(db, ScriptedInvoker()), DOC, interval=10.0)

		async def on_tick(result):
			runner.stop()

		runner.on_tick = on_tick
		assert await asyncio.wait_for(runner.run(), timeout=2.0) == 1
