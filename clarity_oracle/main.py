"""Interactive console for asking the oracle questions."""

import asyncio
import logging

from .domain.models.evidence import decode_payload
from .domain.services.orchestrator import QuestionState
from .infrastructure.config import OracleSettings
from .infrastructure.dependencies import ServiceContainer

CONSOLE_REQUESTER = "0x3333333333333333333333333333333333333333"
RESOLUTION_TIMEOUT = 180.0


async def wait_for_resolution(container: ServiceContainer, question_id: str, timeout: float = RESOLUTION_TIMEOUT) -> QuestionState:
    """Poll the orchestrator until the question is done or failed."""
    orchestrator = await container.get_orchestrator()
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        state = orchestrator.state_of(question_id)
        if state in (QuestionState.DONE, QuestionState.FAILED):
            return state
        await asyncio.sleep(0.5)
    raise asyncio.TimeoutError(f"Question {question_id} not resolved within {timeout}s")


async def main():
    """Run the oracle console."""
    settings = OracleSettings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    print("Clarity Oracle - optimistic assertions answered by AI consensus")
    print("---------------------------------------------------------------")

    container = ServiceContainer(settings)
    ledger = container.get_ledger()
    await container.start()

    try:
        while True:
            question = await asyncio.to_thread(input, "\nEnter a question (or 'quit' to exit): ")
            if question.lower() in ('quit', 'exit', 'q'):
                break

            try:
                receipt = await ledger.submit_transaction(
                    CONSOLE_REQUESTER, ledger.contract_address, "requestQuestion", {"text": question}
                )
                question_id = receipt.return_value
                print(f"\nSubmitted {question_id}, resolving...")

                state = await wait_for_resolution(container, question_id)
                orchestrator = await container.get_orchestrator()
                assertion = await ledger.call(ledger.contract_address, "getAssertion", {"question_id": question_id})

                print("\nResults:")
                print(f"State: {state.value}")
                print(f"Assertion: {assertion.status.value}")
                if state == QuestionState.FAILED:
                    print(f"Reason: {orchestrator.status()['questions'][question_id]['error']}")
                if assertion.answer_payload:
                    answer = decode_payload(assertion.answer_payload)
                    print(f"Verdict: {answer['verdict']} (confidence {answer['confidence']})")
                    print(f"\nSummary: {answer['summary']}")
                    print("\nSources:")
                    for i, source in enumerate(answer["sources"], 1):
                        print(f"{i}. {source['title']} {source['url']}")
                    print(f"\nChallenge window closes at {assertion.challenge_window_end}")

            except Exception as e:
                print(f"\nError resolving question: {e}")

    finally:
        # Clean up
        await container.shutdown()


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
