import asyncio
import os
import sys
from pathlib import Path

# Add project root to path so we can import transcriptor
sys.path.append(os.getcwd())

from transcriptor.config.settings import settings
from transcriptor.services.code_detection import CodeDetectionError, CodeDetectionService, format_timestamp
from transcriptor.services.llm_client import BedrockLlmClient
from transcriptor.services.storage import MediaStorage
from transcriptor.services.transcription import TranscriptionError, TranscriptionService


async def main():
    if len(sys.argv) < 2:
        print("Usage: python scripts/transcribe_file.py path/to/media.mp4")
        return

    file_path = Path(sys.argv[1])
    if not file_path.exists():
        print(f"File '{file_path}' not found.")
        return

    service = TranscriptionService(settings.assemblyai)
    detection = CodeDetectionService(
        settings.detection,
        BedrockLlmClient(settings.bedrock, settings.aws),
    )
    reference = MediaStorage(settings.storage).reference(file_path.stem, file_path)

    print(f"Submitting {file_path.name} ({reference.size_bytes} bytes) to AssemblyAI...")
    try:
        job_id = await service.submit(reference, {"filename": file_path.name})
        print(f"Job {job_id} submitted, polling...")
        result = await service.poll_until_terminal(job_id, lambda status: print(f"  status: {status}"))

        print("\n--- Transcript Result ---")
        print(result.text)
        print("-------------------------")

        if detection.is_available():
            outcome = await detection.detect(result, settings.detection.manual_confidence_threshold)
            for record in outcome.codes:
                print(f"{record.code} at {format_timestamp(record.timestamp)} ({record.confidence:.0%})")
            if outcome.expected_count is not None:
                print(f"Expected codes: {outcome.expected_count}")
        else:
            print("Code detection skipped: Bedrock credentials not configured")
    except TranscriptionError as e:
        print(f"\nTranscription Error: {e}")
    except CodeDetectionError as e:
        print(f"\nDetection Error: {e}")
    finally:
        await service.aclose()


if __name__ == "__main__":
    asyncio.run(main())
