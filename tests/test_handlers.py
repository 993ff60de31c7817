"""
Test suite for step handlers.
External tools are replaced by FakeCommandRunner effects that create the
files the real tool would write.
"""

import zipfile
from pathlib import Path
from unittest.mock import patch

import pytest

from imgpipe.exceptions import HandlerError, RangeSpecError, StepTimeoutError
from imgpipe.handlers import (
    HANDLERS,
    ConvertHandler,
    CustomScriptHandler,
    ExcelExtractHandler,
    OcrHandler,
    PdfExtractHandler,
    ResizeHandler,
    WatermarkHandler,
    get_handler,
)
from imgpipe.handlers.imaging import GRAVITY
from imgpipe.models import StepType

from helpers import FakeCommandRunner


def write_last_arg(argv):
    """Create the output file an ImageMagick command would write."""
    Path(argv[-1]).write_bytes(b"img")


def fake_pdfimages(images_per_page=1):
    def effect(argv):
        prefix = Path(argv[-1])
        for index in range(images_per_page):
            Path(f"{prefix}-{index:03d}.png").write_bytes(b"p" * 10)
    return effect


def fake_pdftoppm(argv):
    prefix = Path(argv[-1])
    page = int(argv[argv.index('-f') + 1])
    Path(f"{prefix}-{page:02d}.png").write_bytes(b"r" * 20)


def make_images(directory, *names):
    directory.mkdir(parents=True, exist_ok=True)
    for name in names:
        (directory / name).write_bytes(b"x")
    return directory


@pytest.fixture
def settings(tmp_path):
    return {
        'output_dir': str(tmp_path / "out"),
        'temp_dir': str(tmp_path / "tmp"),
        'workflow_input': str(tmp_path / "input.pdf"),
        'parallel_jobs': 2,
        'quality': {'jpg': 85, 'webp': 90, 'png': 95},
    }


@pytest.fixture
def pdf(tmp_path):
    path = tmp_path / "input.pdf"
    path.write_bytes(b"%PDF-1.4\n")
    return path


class TestRegistry:

    def test_every_step_type_has_a_handler(self):
        assert set(HANDLERS) == set(StepType)

    def test_get_handler_accepts_type_string(self):
        assert get_handler('resize') is ResizeHandler
        assert get_handler(StepType.OCR) is OcrHandler

    def test_missing_tools(self):
        with patch.object(FakeCommandRunner, 'which', side_effect=lambda tool: None if tool == 'pdfinfo' else tool):
            assert PdfExtractHandler(FakeCommandRunner()).missing_tools() == ['pdfinfo']
            assert ExcelExtractHandler(FakeCommandRunner()).missing_tools() == []

    def test_render_mode_tool_is_required(self):
        with patch.object(FakeCommandRunner, 'which', side_effect=lambda tool: None if tool == 'pdftoppm' else tool):
            assert PdfExtractHandler(FakeCommandRunner()).missing_tools() == ['pdftoppm']

    @pytest.mark.parametrize("params,settings,expected", [
        ({'parallel_jobs': 3}, {'parallel_jobs': 8}, 3),
        ({}, {'max_parallel': 2}, 2),
        ({}, {}, 1),
        ({'parallel_jobs': 0}, {}, 1),
        ({'parallel_jobs': 'many'}, {'parallel_jobs': 5}, 5),
    ])
    def test_parallel_jobs(self, params, settings, expected):
        assert ConvertHandler(FakeCommandRunner()).parallel_jobs(params, settings) == expected


class TestPdfExtractHandler:

    def runner(self, pages=5, images_per_page=1, results=None):
        return FakeCommandRunner(
            results=results,
            stdout={'pdfinfo': f"Title: x\nPages:          {pages}\n"},
            effects={'pdfimages': fake_pdfimages(images_per_page), 'pdftoppm': fake_pdftoppm},
        )

    def test_selected_pages_numbered_contiguously(self, pdf, settings, tmp_path):
        runner = self.runner()
        params = {
            'input': str(pdf),
            'output_dir': str(tmp_path / "out"),
            'pages': "5,1,3",
            'output_template': str(tmp_path / "out" / "input_{counter:03d}.{input_ext}"),
        }
        result = PdfExtractHandler(runner).run(params, settings)

        assert result.succeeded
        assert result.items_produced == 3
        assert result.bytes_produced == 30
        pages = [argv[argv.index('-f') + 1] for argv in runner.commands('pdfimages')]
        assert pages == ['1', '3', '5']
        assert sorted(Path(p).name for p in result.outputs) == [
            'input_001.png', 'input_002.png', 'input_003.png',
        ]

    def test_open_range_uses_page_count(self, pdf, settings):
        runner = self.runner(pages=4)
        result = PdfExtractHandler(runner).run({'input': str(pdf), 'pages': '3-'}, settings)

        pages = [argv[argv.index('-f') + 1] for argv in runner.commands('pdfimages')]
        assert pages == ['3', '4']
        assert result.items_produced == 2

    def test_default_names_and_all_pages(self, pdf, settings):
        runner = self.runner(pages=2, images_per_page=2)
        result = PdfExtractHandler(runner).run({'input': str(pdf)}, settings)

        assert result.items_produced == 4
        names = [Path(p).name for p in result.outputs]
        assert names == ['input_001.png', 'input_002.png', 'input_003.png', 'input_004.png']
        assert all(Path(p).parent == Path(settings['output_dir']) for p in result.outputs)

    def test_render_mode_uses_pdftoppm(self, pdf, settings):
        runner = self.runner(pages=3)
        result = PdfExtractHandler(runner).run(
            {'input': str(pdf), 'mode': 'render', 'dpi': 300, 'pages': '2'}, settings
        )
        assert result.succeeded
        argv = runner.commands('pdftoppm')[0]
        assert argv[argv.index('-r') + 1] == '300'
        assert '-png' in argv

    def test_scratch_directory_removed(self, pdf, settings):
        PdfExtractHandler(self.runner(pages=1)).run({'input': str(pdf)}, settings)
        assert list(Path(settings['temp_dir']).iterdir()) == []

    def test_tool_failure_cleans_partial_output(self, pdf, settings):
        calls = []

        def flaky(argv):
            calls.append(argv)
            if len(calls) == 2:
                raise StepTimeoutError(1)
            fake_pdfimages()(argv)

        runner = FakeCommandRunner(stdout={'pdfinfo': "Pages: 3\n"}, effects={'pdfimages': flaky})
        with pytest.raises(StepTimeoutError):
            PdfExtractHandler(runner).run({'input': str(pdf)}, settings)
        assert not any(Path(settings['output_dir']).glob('*.png'))

    def test_pdfimages_error_is_failure(self, pdf, settings):
        result = PdfExtractHandler(self.runner(results={'pdfimages': 1})).run({'input': str(pdf)}, settings)
        assert not result.succeeded
        assert "PDF extraction failed" in result.error_message

    def test_missing_input(self, settings, tmp_path):
        result = PdfExtractHandler(self.runner()).run({'input': str(tmp_path / "none.pdf")}, settings)
        assert not result.succeeded
        assert "not found" in result.error_message

    def test_open_range_without_page_count(self, pdf, settings):
        runner = FakeCommandRunner(results={'pdfinfo': 1})
        result = PdfExtractHandler(runner).run({'input': str(pdf), 'pages': '2-'}, settings)
        assert not result.succeeded
        assert "Cannot determine page count" in result.error_message

    def test_invalid_dynamic_range_raises(self, pdf, settings):
        with pytest.raises(RangeSpecError):
            PdfExtractHandler(self.runner()).run({'input': str(pdf), 'pages': '3-1'}, settings)

    def test_no_images(self, pdf, settings):
        runner = FakeCommandRunner(stdout={'pdfinfo': "Pages: 2\n"})
        result = PdfExtractHandler(runner).run({'input': str(pdf)}, settings)
        assert not result.succeeded
        assert "No images found" in result.error_message


class TestExcelExtractHandler:

    @pytest.fixture
    def workbook(self, tmp_path):
        path = tmp_path / "Book.xlsx"
        with zipfile.ZipFile(path, 'w') as archive:
            archive.writestr('xl/workbook.xml', '<workbook/>')
            archive.writestr('xl/media/image1.png', b'a' * 5)
            archive.writestr('xl/media/image2.jpeg', b'b' * 7)
            archive.writestr('xl/media/image3.png', b'c' * 9)
        return path

    def test_extracts_media(self, workbook, settings):
        result = ExcelExtractHandler(FakeCommandRunner()).run({'input': str(workbook)}, settings)

        assert result.succeeded
        assert result.items_produced == 3
        assert result.bytes_produced == 21
        assert [Path(p).name for p in result.outputs] == [
            'Book_img_001.png', 'Book_img_002.jpeg', 'Book_img_003.png',
        ]

    def test_keep_names_and_items_range(self, workbook, settings):
        result = ExcelExtractHandler(FakeCommandRunner()).run(
            {'input': str(workbook), 'keep_names': True, 'items': '3,2'}, settings
        )
        assert [Path(p).name for p in result.outputs] == ['image2.jpeg', 'image3.png']

    def test_output_template(self, workbook, settings, tmp_path):
        template = str(tmp_path / "x" / "Book_{counter:02d}.{input_ext}")
        result = ExcelExtractHandler(FakeCommandRunner()).run(
            {'input': str(workbook), 'output_template': template, 'items': '2-'}, settings
        )
        assert [Path(p).name for p in result.outputs] == ['Book_01.jpeg', 'Book_02.png']

    def test_not_a_zip(self, tmp_path, settings):
        legacy = tmp_path / "old.xls"
        legacy.write_bytes(b"\xd0\xcf\x11\xe0legacy")
        result = ExcelExtractHandler(FakeCommandRunner()).run({'input': str(legacy)}, settings)
        assert not result.succeeded
        assert "not an Open XML workbook" in result.error_message

    def test_no_media(self, tmp_path, settings):
        path = tmp_path / "empty.xlsx"
        with zipfile.ZipFile(path, 'w') as archive:
            archive.writestr('xl/workbook.xml', '<workbook/>')
        result = ExcelExtractHandler(FakeCommandRunner()).run({'input': str(path)}, settings)
        assert not result.succeeded


class TestConvertHandler:

    def test_converts_directory(self, tmp_path, settings):
        source = make_images(tmp_path / "in", "b.png", "a.jpg", "notes.txt")
        runner = FakeCommandRunner(effects={'convert': write_last_arg})
        result = ConvertHandler(runner).run({'input': str(source), 'format': 'webp'}, settings)

        assert result.succeeded
        assert result.items_produced == 2
        assert result.bytes_produced == 6
        assert sorted(Path(p).name for p in result.outputs) == ['a.webp', 'b.webp']
        for argv in runner.commands('convert'):
            assert argv[argv.index('-quality') + 1] == '90'

    def test_explicit_quality_and_glob(self, tmp_path, settings):
        make_images(tmp_path / "in", "a.png", "b.png", "c.jpg")
        runner = FakeCommandRunner(effects={'convert': write_last_arg})
        result = ConvertHandler(runner).run(
            {'input': str(tmp_path / "in" / "*.png"), 'format': 'jpg', 'quality': 70, 'strip': True}, settings
        )
        assert result.items_produced == 2
        argv = runner.commands('convert')[0]
        assert '-strip' in argv
        assert argv[argv.index('-quality') + 1] == '70'

    def test_partial_failure_aggregated(self, tmp_path, settings):
        make_images(tmp_path / "in", "a.png", "b.png")
        runner = FakeCommandRunner(effects={'convert': write_last_arg})
        handler = ConvertHandler(runner)
        original = handler.execute

        def execute(argv):
            if str(argv[1]).endswith("b.png"):
                raise HandlerError("convert exited with 1")
            return original(argv)

        handler.execute = execute
        result = handler.run({'input': str(tmp_path / "in"), 'format': 'png'}, settings)

        assert not result.succeeded
        assert result.items_produced == 1
        assert "1 of 2 item(s) failed" in result.error_message

    def test_no_inputs(self, tmp_path, settings):
        result = ConvertHandler(FakeCommandRunner()).run(
            {'input': str(tmp_path / "missing"), 'format': 'png'}, settings
        )
        assert not result.succeeded
        assert result.error_message == "No input images found"

    def test_tool_exit_code_fails_items(self, tmp_path, settings):
        make_images(tmp_path / "in", "a.png")
        runner = FakeCommandRunner(results={'convert': 1})
        result = ConvertHandler(runner).run({'input': str(tmp_path / "in"), 'format': 'png'}, settings)
        assert not result.succeeded
        assert "simulated failure" in result.error_message


class TestResizeHandler:

    @pytest.mark.parametrize("params,expected", [
        ({'width': 200, 'height': 100}, "200x100"),
        ({'width': 200, 'height': 100, 'maintain_aspect': False}, "200x100!"),
        ({'width': 200}, "200x"),
        ({'height': 50}, "x50"),
        ({'max_width': 1200, 'max_height': 800}, "1200x800>"),
        ({'max_width': 1200}, "1200x>"),
        ({}, None),
    ])
    def test_geometry(self, params, expected):
        assert ResizeHandler.geometry(params) == expected

    def test_output_template_per_item(self, tmp_path, settings):
        source = make_images(tmp_path / "extracted", "p1.png", "p2.png")
        runner = FakeCommandRunner(effects={'convert': write_last_arg})
        template = str(tmp_path / "out" / "doc_thumb_{counter:03d}.jpg")
        result = ResizeHandler(runner).run(
            {'input_dir': str(source), 'width': 200, 'height': 200, 'output_template': template}, settings
        )

        assert sorted(Path(p).name for p in result.outputs) == ['doc_thumb_001.jpg', 'doc_thumb_002.jpg']
        argv = runner.commands('convert')[0]
        assert argv[argv.index('-resize') + 1] == '200x200'
        assert argv[argv.index('-quality') + 1] == '85'

    def test_falls_back_to_workflow_input(self, tmp_path, settings):
        image = tmp_path / "photo.png"
        image.write_bytes(b"x")
        settings['workflow_input'] = str(image)
        runner = FakeCommandRunner(effects={'convert': write_last_arg})
        result = ResizeHandler(runner).run({'max_width': 100, 'format': 'webp'}, settings)
        assert [Path(p).name for p in result.outputs] == ['photo_resized.webp']

    def test_requires_dimension(self, settings):
        result = ResizeHandler(FakeCommandRunner()).run({}, settings)
        assert not result.succeeded


class TestWatermarkHandler:

    def test_image_watermark(self, tmp_path, settings):
        source = make_images(tmp_path / "in", "a.png")
        mark = tmp_path / "mark.png"
        mark.write_bytes(b"m")
        runner = FakeCommandRunner(effects={'composite': write_last_arg})
        result = WatermarkHandler(runner).run(
            {'input': str(source), 'watermark_file': str(mark), 'position': 'top-left', 'transparency': 30},
            settings,
        )
        assert result.succeeded
        argv = runner.commands('composite')[0]
        assert argv[argv.index('-dissolve') + 1] == '70%'
        assert argv[argv.index('-gravity') + 1] == 'northwest'

    def test_text_watermark(self, tmp_path, settings):
        source = make_images(tmp_path / "in", "a.png")
        runner = FakeCommandRunner(effects={'convert': write_last_arg})
        result = WatermarkHandler(runner).run({'input': str(source), 'text': '(c) 2024'}, settings)
        assert result.succeeded
        argv = runner.commands('convert')[0]
        assert '(c) 2024' in argv
        assert argv[argv.index('-gravity') + 1] == GRAVITY['bottom-right']

    @pytest.mark.parametrize("position", ["northwest", "south", "center"])
    def test_gravity_name_positions(self, tmp_path, settings, caplog, position):
        source = make_images(tmp_path / "in", "a.png")
        runner = FakeCommandRunner(effects={'convert': write_last_arg})
        result = WatermarkHandler(runner).run(
            {'input': str(source), 'text': 'draft', 'position': position}, settings
        )
        assert result.succeeded
        argv = runner.commands('convert')[0]
        assert argv[argv.index('-gravity') + 1] == position
        assert "Unknown watermark position" not in caplog.text

    def test_missing_watermark_file(self, tmp_path, settings):
        result = WatermarkHandler(FakeCommandRunner()).run(
            {'input': str(tmp_path), 'watermark_file': str(tmp_path / "nope.png")}, settings
        )
        assert not result.succeeded
        assert "Watermark file not found" in result.error_message


class TestOcrHandler:

    def test_tesseract_invocation(self, tmp_path, settings):
        source = make_images(tmp_path / "scans", "page.png")

        def write_text(argv):
            Path(f"{argv[2]}.txt").write_text("hello")

        runner = FakeCommandRunner(effects={'tesseract': write_text})
        result = OcrHandler(runner).run({'input': str(source), 'language': 'deu'}, settings)

        assert result.succeeded
        argv = runner.commands('tesseract')[0]
        assert argv[2] == str(Path(settings['output_dir']) / "page")
        assert argv[argv.index('-l') + 1] == 'deu'
        assert [Path(p).name for p in result.outputs] == ['page.txt']
        assert result.bytes_produced == 5

    def test_pdf_output_config(self, tmp_path, settings):
        source = make_images(tmp_path / "scans", "page.png")
        runner = FakeCommandRunner()
        OcrHandler(runner).run({'input': str(source), 'output_format': 'pdf'}, settings)
        assert runner.commands('tesseract')[0][-1] == 'pdf'

    def test_unsupported_format(self, settings):
        result = OcrHandler(FakeCommandRunner()).run({'output_format': 'docx'}, settings)
        assert not result.succeeded


class TestCustomScriptHandler:

    def test_runs_script_through_shell(self, settings):
        runner = FakeCommandRunner()
        result = CustomScriptHandler(runner).run({'script': 'echo hi', 'items_produced': 2}, settings)
        assert result.succeeded
        assert result.items_produced == 2
        assert runner.calls == [['sh', '-c', 'echo hi']]

    def test_exit_status_decides(self, settings):
        runner = FakeCommandRunner(results={'exit 4': 4})
        result = CustomScriptHandler(runner).run({'script': 'exit 4'}, settings)
        assert not result.succeeded
        assert "Custom script failed" in result.error_message

    def test_real_script(self, tmp_path, settings):
        marker = tmp_path / "ran"
        result = CustomScriptHandler().run({'script': f'touch {marker}'}, settings)
        assert result.succeeded
        assert marker.exists()
