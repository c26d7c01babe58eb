import logging
import os
import sys

import click

from . import __version__
from .config import AlignerOptions, OutputFormat, read_config_file, resolve_output_format
from .core import SpeechAligner
from .errors import AlignerError


def load_config(ctx, param, value):
    """Use a Kaldi style config file as defaults for the remaining options."""
    if not value:
        return value
    # option spelling -> (parameter name, negated)
    names = {}
    for p in ctx.command.params:
        for opt in p.opts:
            if opt.startswith('--'):
                names[opt[2:].replace('-', '_')] = (p.name, False)
        for opt in getattr(p, 'secondary_opts', []):
            if opt.startswith('--'):
                names[opt[2:].replace('-', '_')] = (p.name, True)

    try:
        settings = read_config_file(value)
    except AlignerError as e:
        raise click.BadParameter(str(e), ctx=ctx, param=param)

    defaults = {}
    unknown = []
    for key, setting in settings.items():
        if key not in names:
            unknown.append(key)
            continue
        name, negated = names[key]
        defaults[name] = (not setting) if negated and isinstance(setting, bool) else setting
    if unknown:
        raise click.BadParameter(f"unknown option(s) in config file: {', '.join(sorted(unknown))}",
                                 ctx=ctx, param=param)
    ctx.default_map = {**(ctx.default_map or {}), **defaults}
    return value


def select_output_format(fmt, custom_output, mlf_output, ctm_output, write_lengths):
    legacy_set = custom_output is not None or mlf_output or ctm_output or write_lengths
    if fmt is not None:
        if legacy_set:
            raise click.UsageError("--format cannot be combined with the legacy *-output / --write-lengths flags")
        return OutputFormat(fmt)
    if custom_output is None and not (mlf_output or ctm_output or write_lengths):
        return OutputFormat.CUSTOM
    return resolve_output_format(custom=bool(custom_output), mlf=mlf_output, ctm=ctm_output,
                                 write_lengths=write_lengths)


@click.command()
@click.argument('wav_scp', type=click.Path(exists=True, dir_okay=False))
@click.argument('text', type=click.Path(exists=True, dir_okay=False))
@click.argument('output', type=click.Path(dir_okay=False))
@click.option('--config', type=click.Path(exists=True, dir_okay=False), callback=load_config,
              is_eager=True, expose_value=False, help='Config file with --name=value lines')
# features
@click.option('--sample-frequency', default=16000, type=int, help='Expected sampling rate of the audio')
@click.option('--frame-shift', default=0.01, type=float, help='Frame shift in seconds')
@click.option('--frame-length', default=0.025, type=float, help='Frame length in seconds')
@click.option('--num-ceps', default=13, type=int, help='Number of cepstra in the MFCC computation')
@click.option('--subtract-mean/--no-subtract-mean', default=False,
              help='Subtract mean of each feature file [CMS]; not recommended to do it this way.')
@click.option('--vtln-warp', default=1.0, type=float, help='Vtln warp factor (only applicable if vtln-map not specified)')
@click.option('--vtln-map', type=click.Path(exists=True, dir_okay=False),
              help='Map from utterance or speaker-id to vtln warp factor')
@click.option('--utt2spk', type=click.Path(exists=True, dir_okay=False),
              help='Utterance to speaker-id map (if doing VTLN and you have warps per speaker)')
@click.option('--channel', default=-1, type=int, help='Channel to extract (-1 -> expect mono, 0 -> left, 1 -> right)')
@click.option('--min-duration', default=0.0, type=float, help='Minimum duration of segments to process (in seconds)')
@click.option('--length-tolerance', default=0, type=int,
              help='If length is different, trim as shortest up to a frame difference of length-tolerance, '
                   'otherwise exclude segment.')
@click.option('--pitch/--no-pitch', 'use_pitch', default=True, help='Append pitch features to the MFCCs')
@click.option('--norm-vars/--no-norm-vars', default=False, help='If true, normalize variances.')
@click.option('--norm-means/--no-norm-means', default=True, help='You can set this to false to turn off mean normalization.')
# graph
@click.option('--word-symbol-table', type=click.Path(exists=True, dir_okay=False), help='Symbol table for words')
@click.option('--phone-symbol-table', type=click.Path(exists=True, dir_okay=False), help='Symbol table for phones')
@click.option('--lexicon', type=click.Path(exists=True, dir_okay=False), help='Lexicon (word phone1 phone2 ...)')
@click.option('--lexicon-no-opt-sil', type=click.Path(exists=True, dir_okay=False),
              help='Lexicon used when optional silence is disabled')
@click.option('--opt-sil/--no-opt-sil', default=True, help='Allow optional silence between words')
@click.option('--model', type=click.Path(exists=True, dir_okay=False), help='Acoustic model (.pt)')
@click.option('--silence-phones', default="1", help='Colon separated list of silence phone ids')
# align
@click.option('--acoustic-scale', default=0.1, type=float, help='Scaling factor for acoustic likelihoods')
@click.option('--beam', default=200.0, type=float, help='Decoding beam')
@click.option('--retry-beam', default=0.0, type=float, help='Decoding beam for second try at alignment')
@click.option('--boost-sil', default=1.0, type=float, help='Factor by which to boost silence probs')
# text
@click.option('--text-case-sensitive/--no-text-case-sensitive', default=False,
              help='If true, distinguish lower and upper words in text')
@click.option('--spell-en-oov/--no-spell-en-oov', default=True,
              help='If true, for english oov words, make its pronunciation with each letter')
# output
@click.option('--format', 'fmt', type=click.Choice([f.value for f in OutputFormat]), default=None,
              help='Output format (default: custom)')
@click.option('--custom-output/--no-custom-output', default=None, help='Legacy switch for --format custom')
@click.option('--mlf-output', is_flag=True, default=False, help='Legacy switch for --format mlf')
@click.option('--ctm-output', is_flag=True, default=False, help='Legacy switch for --format ctm')
@click.option('--write-lengths', is_flag=True, default=False, help='Legacy switch for --format lengths')
@click.option('--per-frame', is_flag=True, default=False,
              help='If true, write out the frame-level phone alignment (else phone sequence)')
@click.option('--verbose', '-V', is_flag=True, default=False, help='Enable debug logging')
@click.version_option(__version__, '--version', '-v', message='%(version)s')
def main(wav_scp, text, output, fmt, custom_output, mlf_output, ctm_output, write_lengths, verbose, **kwargs):
    """
    Speech Aligner - get phone alignments of speech.

    WAV_SCP: list of `utt-id path/to/audio` lines
    TEXT: transcripts, `utt-id word1 word2 ...`, in the same order as WAV_SCP
    OUTPUT: output file ('-' for stdout)

    Example:
        speech-align --config conf/align.conf data/wav.scp data/text data/out.ali
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO,
                        format="%(name)s %(levelname)s: %(message)s")

    try:
        output_format = select_output_format(fmt, custom_output, mlf_output, ctm_output, write_lengths)
        options = AlignerOptions(output_format=output_format, **kwargs)

        if output != "-" and os.path.dirname(os.path.abspath(output)):
            os.makedirs(os.path.dirname(os.path.abspath(output)), exist_ok=True)

        aligner = SpeechAligner.from_options(options)
        summary = aligner.process_files(wav_scp, text, output)

    except AlignerError as e:
        click.echo(f"✗ {e}", err=True)
        raise click.Abort()

    except KeyboardInterrupt:
        click.echo("\n⏹️  Processing interrupted by user", err=True)
        raise click.Abort()

    click.echo(f"Done {summary.num_success} out of {summary.num_utts} utterances.", err=True)
    sys.exit(summary.exit_code)


if __name__ == '__main__':
    main()
