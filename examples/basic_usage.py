import io
import time

import torch
import torchaudio

from speech_aligner import AlignerOptions, OutputFormat, SpeechAligner, make_writer


def example_single_utterance():

    options = AlignerOptions(
        word_symbol_table="examples/model/words.txt",
        phone_symbol_table="examples/model/phones.txt",
        lexicon="examples/model/lexicon.txt",
        model="examples/model/final.pt",
        output_format=OutputFormat.CTM,
        retry_beam=1000.0,
    )
    aligner = SpeechAligner.from_options(options)

    audio_path = "examples/samples/nihao.wav"
    wav, sr = torchaudio.load(audio_path)
    transcript = "nihao 你好 世界"

    out = io.StringIO()
    writer = make_writer(options.output_format, out, aligner.symbols, options.frame_shift,
                         trans_model=aligner.trans_model)

    t0 = time.time()
    summary = aligner.run([("nihao", wav, sr)], [transcript], writer)
    t1 = time.time()

    print(out.getvalue())
    print(f"Aligned {summary.num_success} out of {summary.num_utts} utterances")
    print(f"Processing time: {t1 - t0:.2f} seconds")


def example_batch():
    # same as: speech-align --format lengths data/wav.scp data/text data/out.lengths
    options = AlignerOptions(
        word_symbol_table="examples/model/words.txt",
        phone_symbol_table="examples/model/phones.txt",
        lexicon="examples/model/lexicon.txt",
        model="examples/model/final.pt",
        output_format="lengths",
    )
    summary = SpeechAligner.from_options(options).process_files("data/wav.scp", "data/text", "data/out.lengths")
    for reason, count in summary.skipped.items():
        print(f"skipped {count}: {reason.value}")


if __name__ == "__main__":
    torch.random.manual_seed(42)
    example_single_utterance()
