"""Tests for the conversation state machine."""

import pytest

from callagent.fsm import (
    TRANSITION_TABLE,
    TRANSITIONS,
    Trigger,
    confirmation_summary,
    valid_triggers,
)
from callagent.models.session import ConversationStep, Role

from conftest import FULL_CORE, QUESTIONS

STEP_ORDER = [
    ConversationStep.GREETING,
    ConversationStep.COLLECTING,
    ConversationStep.CONFIRMING,
    ConversationStep.BOOKING,
    ConversationStep.COMPLETE,
]


class TestTransitionTable:
    def test_no_duplicate_rows(self):
        assert len(TRANSITION_TABLE) == len(TRANSITIONS)

    def test_every_step_handles_empty_messages(self):
        for step in ConversationStep:
            assert Trigger.EMPTY in valid_triggers(step)

    def test_complete_is_terminal(self):
        for t in TRANSITIONS:
            if t.from_step == ConversationStep.COMPLETE:
                assert t.to_step == ConversationStep.COMPLETE

    def test_steps_only_move_forward_except_dispute(self):
        for t in TRANSITIONS:
            if (t.from_step, t.trigger) == (ConversationStep.CONFIRMING, Trigger.DISPUTED):
                assert t.to_step == ConversationStep.COLLECTING
                continue
            assert STEP_ORDER.index(t.to_step) >= STEP_ORDER.index(t.from_step)

    def test_collecting_never_jumps_to_booking(self):
        targets = {t.to_step for t in TRANSITIONS if t.from_step == ConversationStep.COLLECTING}
        assert ConversationStep.BOOKING not in targets
        assert ConversationStep.COMPLETE not in targets


class TestGreeting:
    def test_first_message_moves_to_collecting(self, machine, make_session):
        session = make_session(step=ConversationStep.GREETING)
        turn = machine.advance(session, "Hello?")

        assert turn.next_step == ConversationStep.COLLECTING
        assert turn.reply == (
            "Hi there! umm, I'm calling to help collect some information for "
            "your inquiry. To get started, what's your name?"
        )
        # Greeting replies are never stored as field values
        assert turn.collected_data == {}

    def test_empty_message_stays_in_greeting(self, machine, make_session):
        turn = machine.advance(make_session(step=ConversationStep.GREETING), "   ")
        assert turn.next_step == ConversationStep.GREETING
        assert turn.trigger == Trigger.EMPTY


class TestCollecting:
    def test_short_name_asks_for_email(self, machine, make_session):
        turn = machine.advance(make_session(), "John Smith")

        assert turn.collected_data == {"name": "John Smith"}
        assert turn.next_step == ConversationStep.COLLECTING
        assert turn.reply == "umm, and what's your email?"

    def test_email_asks_for_phone(self, machine, make_session):
        session = make_session(collected={"name": "John Smith"})
        turn = machine.advance(session, "john@example.com")

        assert turn.collected_data == {"name": "John Smith", "email": "john@example.com"}
        assert turn.reply == "umm, and what's your phone?"

    def test_questions_follow_core_fields(self, machine, make_session):
        session = make_session(collected=dict(FULL_CORE), questions=QUESTIONS)
        turn = machine.advance(session, "Kitchen remodel")

        assert turn.collected_data["service"] == "Kitchen remodel"
        assert turn.reply == "Great! When are you hoping to get started?"

    def test_core_fields_asked_before_questions(self, machine, make_session):
        session = make_session(questions=QUESTIONS)
        turn = machine.advance(session, "Kitchen remodel")
        assert turn.collected_data == {"name": "Kitchen remodel"}

    def test_last_field_moves_to_confirming(self, machine, make_session):
        session = make_session(collected={"name": "John Smith", "email": "john@example.com"})
        turn = machine.advance(session, "555-123-4567")

        assert turn.next_step == ConversationStep.CONFIRMING
        assert turn.trigger == Trigger.ALL_COLLECTED
        assert turn.reply.startswith("Perfect! Let me confirm the information I've collected.")
        assert "Phone: 555-123-4567" in turn.reply
        assert turn.reply.endswith("Is all of that correct?")

    def test_already_complete_data_moves_to_confirming(self, machine, make_session):
        turn = machine.advance(make_session(collected=dict(FULL_CORE)), "ok")
        assert turn.next_step == ConversationStep.CONFIRMING

    def test_long_unstructured_message_asks_again(self, machine, make_session):
        turn = machine.advance(make_session(), "well I am not really sure about that")

        assert turn.collected_data == {}
        assert turn.next_step == ConversationStep.COLLECTING
        assert turn.reply == "umm, and what's your name?"

    def test_empty_message_reprompts(self, machine, make_session):
        turn = machine.advance(make_session(collected={"name": "John"}), "")

        assert turn.next_step == ConversationStep.COLLECTING
        assert turn.reply.startswith("Sorry, I didn't catch that.")
        assert "email" in turn.reply


class TestConfirming:
    def test_affirmation_offers_booking(self, machine, make_session):
        session = make_session(step=ConversationStep.CONFIRMING, collected=dict(FULL_CORE))
        turn = machine.advance(session, "Yes, that's correct")

        assert turn.next_step == ConversationStep.BOOKING
        assert "schedule an appointment" in turn.reply

    def test_dispute_naming_a_field(self, machine, make_session):
        session = make_session(step=ConversationStep.CONFIRMING, collected=dict(FULL_CORE))
        turn = machine.advance(session, "No, the email is wrong")

        assert turn.next_step == ConversationStep.COLLECTING
        assert turn.pending_correction == "email"
        assert turn.reply == "No problem! What's the correct email?"
        # Nothing is cleared on dispute
        assert turn.collected_data == FULL_CORE

    def test_dispute_without_field(self, machine, make_session):
        session = make_session(step=ConversationStep.CONFIRMING, collected=dict(FULL_CORE))
        turn = machine.advance(session, "Nope")

        assert turn.next_step == ConversationStep.COLLECTING
        assert turn.pending_correction is None
        assert turn.reply == "No problem! What would you like me to correct?"


class TestCorrections:
    def test_pending_correction_overwrites_field(self, machine, make_session):
        session = make_session(collected=dict(FULL_CORE), pending_correction="email")
        turn = machine.advance(session, "it's jane@example.org")

        assert turn.collected_data["email"] == "jane@example.org"
        assert turn.pending_correction is None
        assert turn.next_step == ConversationStep.CONFIRMING
        assert "Email: jane@example.org" in turn.reply

    def test_naming_a_field_after_open_dispute(self, machine, make_session):
        session = make_session(collected=dict(FULL_CORE))
        turn = machine.advance(session, "the phone number")

        assert turn.trigger == Trigger.CORRECTION_NAMED
        assert turn.next_step == ConversationStep.COLLECTING
        assert turn.pending_correction == "phone"
        assert turn.reply == "Got it. What's the correct phone?"

    def test_disputing_an_additional_answer(self, machine, make_session):
        collected = {**FULL_CORE, "service": "Plumbing", "timeline": "Soon", "budget": "10k"}
        session = make_session(
            step=ConversationStep.CONFIRMING, collected=collected, questions=QUESTIONS,
        )
        turn = machine.advance(session, "No, the timeline changed")

        assert turn.pending_correction == "timeline"
        assert turn.reply == "No problem! What's the correct timeline?"

    def test_full_correction_round_trip(self, machine, make_session):
        session = make_session(step=ConversationStep.CONFIRMING, collected=dict(FULL_CORE))
        session = machine.advance(session, "No, my name is wrong").apply(session)
        turn = machine.advance(session, "Jane Doe")

        assert turn.collected_data["name"] == "Jane Doe"
        assert turn.next_step == ConversationStep.CONFIRMING


class TestBookingAndComplete:
    def test_accepting_booking(self, machine, make_session):
        session = make_session(step=ConversationStep.BOOKING, collected=dict(FULL_CORE))
        turn = machine.advance(session, "Sure, book it")

        assert turn.next_step == ConversationStep.COMPLETE
        assert "within 24 hours" in turn.reply

    def test_declining_booking(self, machine, make_session):
        session = make_session(step=ConversationStep.BOOKING, collected=dict(FULL_CORE))
        turn = machine.advance(session, "No thanks")

        assert turn.next_step == ConversationStep.COMPLETE
        assert turn.reply == (
            "No worries! We have all your information and someone will be "
            "in touch. Have a great day!"
        )

    def test_complete_is_a_no_op(self, machine, make_session):
        session = make_session(step=ConversationStep.COMPLETE, collected=dict(FULL_CORE))
        turn = machine.advance(session, "hello? are you still there")

        assert turn.next_step == ConversationStep.COMPLETE
        assert turn.collected_data == FULL_CORE
        assert turn.reply.startswith("Umm, we already have everything we need")


class TestTurnApply:
    @pytest.mark.parametrize("step", list(ConversationStep))
    def test_every_turn_appends_client_and_agent(self, machine, make_session, step):
        session = make_session(step=step, collected=dict(FULL_CORE))
        turn = machine.advance(session, "yes")
        updated = turn.apply(session)

        assert len(updated.conversation_history) == 2
        client, agent = updated.conversation_history
        assert client.role == Role.CLIENT and client.text == "yes"
        assert agent.role == Role.AGENT and agent.text == turn.reply
        assert client.interruption is False

    def test_apply_leaves_original_untouched(self, machine, make_session):
        session = make_session()
        machine.advance(session, "John Smith").apply(session)
        assert session.collected_data == {}
        assert session.conversation_history == []


class TestConfirmationSummary:
    def test_questions_read_back_after_core(self, make_session):
        session = make_session(questions=QUESTIONS)
        summary = confirmation_summary(session, {**FULL_CORE, "service": "Plumbing"})
        assert summary == (
            "Name: John Smith; Email: john@example.com; Phone: 555-123-4567; "
            "What service are you interested in: Plumbing."
        )

    def test_nothing_collected(self, make_session):
        assert confirmation_summary(make_session(), {}) == "I don't have any details yet."
